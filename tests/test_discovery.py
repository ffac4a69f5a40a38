from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest
from conftest import CHANNEL, NOW, FakePlatform, FakeScraper, stored_vod

from vodsync.config import YouTubeSyncSettings
from vodsync.core.discovery import DiscoveryMailbox, DiscoverySourceMerger
from vodsync.db import DatabaseManager
from vodsync.errors import PartialCycleError, TransientSourceError
from vodsync.integrations.youtube import ListPage
from vodsync.models import Backfill, ListMember


def _merger(
    settings: YouTubeSyncSettings,
    db: DatabaseManager,
    platform: FakePlatform,
    scraper: FakeScraper,
    now: datetime = NOW,
) -> DiscoverySourceMerger:
    return DiscoverySourceMerger(settings, db, platform, scraper, clock=lambda: now, sleep=lambda _: None)


def _vod_rows(db: DatabaseManager) -> list[tuple]:
    with db.cursor() as cur:
        cur.execute("SELECT id, start_time, end_time, token, fingerprint, backfill FROM vods ORDER BY id")
        return [tuple(row) for row in cur.fetchall()]


def test_mailbox_drops_posts_after_close() -> None:
    mailbox = DiscoveryMailbox(capacity=4)
    assert mailbox.post("search", "a") is True
    delivered = mailbox.close()
    assert [d.video_id for d in delivered] == ["a"]
    assert mailbox.post("scrape", "b") is False
    assert mailbox.dropped == 1
    assert mailbox.close() == []


def test_mailbox_drops_posts_beyond_capacity() -> None:
    mailbox = DiscoveryMailbox(capacity=1)
    assert mailbox.post("search", "a") is True
    assert mailbox.post("scrape", "a") is False
    assert [d.source for d in mailbox.close()] == ["search"]


def test_mailbox_accepts_concurrent_posts() -> None:
    mailbox = DiscoveryMailbox(capacity=64)
    threads = [threading.Thread(target=mailbox.post, args=("search", f"id{i}")) for i in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert sorted(d.video_id for d in mailbox.close()) == sorted(f"id{i}" for i in range(16))


@pytest.mark.parametrize(
    ("search_ids", "scraped"),
    [(["live1"], None), ([], "live1"), (["live1"], "live1")],
    ids=["search-only", "scrape-only", "both"],
)
def test_probe_delivery_converges_to_same_state(
    tmp_path,
    youtube_settings: YouTubeSyncSettings,
    search_ids: list[str],
    scraped: str | None,
) -> None:
    reference = DatabaseManager(tmp_path / "reference.db")
    subject = DatabaseManager(tmp_path / "subject.db")
    for store, ids, scrape in ((reference, ["live1"], None), (subject, search_ids, scraped)):
        platform = FakePlatform()
        platform.add_video("live1", start="2024-03-15T11:00:00Z")
        platform.live_ids = list(ids)
        _merger(youtube_settings, store, platform, FakeScraper(scrape)).run_cycle()

    assert _vod_rows(subject) == _vod_rows(reference)
    stored = stored_vod(subject, "live1")
    assert stored is not None
    assert stored.end_time == "2024-03-15T11:15:00Z"
    assert stored.backfill is Backfill.LIVE
    reference.close()
    subject.close()


def test_duplicate_discoveries_fetch_detail_once(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("live1", start="2024-03-15T11:00:00Z")
    platform.live_ids = ["live1"]
    report = _merger(youtube_settings, db, platform, FakeScraper("live1")).run_cycle()

    assert [call for call in platform.detail_calls if call[0] == "live1"] == [("live1", "")]
    assert report.written == 1


def test_backfill_pass_reconciles_owned_members_only(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("vod1", end="2024-01-01T02:00:00Z")
    platform.add_video("vod2", end="2024-01-02T02:00:00Z")
    platform.set_playlist(
        ListMember("vod1", CHANNEL),
        ListMember("foreign", "UC_other"),
        ListMember("private", None),
        ListMember("vod2", CHANNEL),
    )

    report = _merger(youtube_settings, db, platform, FakeScraper()).run_cycle()

    assert report.written == 2
    assert report.skipped == 2
    assert set(db.load_vods()) == {"vod1", "vod2"}
    assert db.latest_token("playlist") == platform.playlist_etag


def test_second_cycle_is_not_modified_and_writes_nothing(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("vod1", end="2024-01-01T02:00:00Z")
    platform.set_playlist(ListMember("vod1", CHANNEL))
    merger = _merger(youtube_settings, db, platform, FakeScraper())
    merger.run_cycle()
    before = _vod_rows(db)

    report = merger.run_cycle()

    assert report.written == 0
    assert report.not_modified >= 1
    assert _vod_rows(db) == before
    assert db.latest_token("playlist") == platform.playlist_etag
    assert db.latest_token("live_search") == platform.search_etag


def test_fetch_everything_walks_every_page_without_tokens(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("a", end="2024-01-01T02:00:00Z")
    platform.add_video("b", end="2024-01-02T02:00:00Z")
    platform.pages = [ListPage([ListMember("a", CHANNEL)]), ListPage([ListMember("b", CHANNEL)])]
    db.record_token("playlist", platform.playlist_etag)
    settings = YouTubeSyncSettings(
        channel_id=CHANNEL, playlist_id="PL", interval_seconds=60, fetch_everything=True, probe_timeout_seconds=5
    )

    report = _merger(settings, db, platform, FakeScraper()).run_cycle()

    assert platform.page_calls == [("", None, 50), ("", "1", 50)]
    assert report.written == 2


def test_stale_sweep_applies_twenty_four_hour_end(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("old", start="2024-03-13T10:00:00Z")
    platform.add_video("fresh", start="2024-03-15T10:00:00Z")
    platform.live_ids = ["old", "fresh"]
    _merger(youtube_settings, db, platform, FakeScraper(), now=datetime(2024, 3, 13, 10, 5, tzinfo=timezone.utc)).run_cycle()

    platform.live_ids = []
    _merger(youtube_settings, db, platform, FakeScraper()).run_cycle()

    old = stored_vod(db, "old")
    fresh = stored_vod(db, "fresh")
    assert old is not None and fresh is not None
    assert old.end_time == "2024-03-14T10:00:00Z"
    assert old.backfill is Backfill.STALE
    assert fresh.end_time == "2024-03-15T10:15:00Z"
    assert fresh.backfill is Backfill.LIVE


def test_stale_sweep_prefers_real_end_time(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("old", start="2024-03-13T10:00:00Z")
    platform.live_ids = ["old"]
    _merger(youtube_settings, db, platform, FakeScraper()).run_cycle()

    platform.live_ids = []
    platform.add_video("old", start="2024-03-13T10:00:00Z", end="2024-03-13T14:00:00Z")
    _merger(youtube_settings, db, platform, FakeScraper()).run_cycle()

    old = stored_vod(db, "old")
    assert old is not None
    assert old.end_time == "2024-03-13T14:00:00Z"
    assert old.backfill is None


def test_detail_failure_is_isolated_then_reported(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("good", end="2024-01-01T02:00:00Z")
    platform.add_video("bad", end="2024-01-02T02:00:00Z")
    platform.failing = {"bad"}
    platform.set_playlist(ListMember("bad", CHANNEL), ListMember("good", CHANNEL))

    with pytest.raises(PartialCycleError) as info:
        _merger(youtube_settings, db, platform, FakeScraper()).run_cycle()

    assert [(f.resource_kind, f.resource_id) for f in info.value.failures] == [("video", "bad")]
    assert set(db.load_vods()) == {"good"}


def test_scrape_failure_does_not_fail_cycle(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("live1", start="2024-03-15T11:00:00Z")
    platform.live_ids = ["live1"]
    scraper = FakeScraper(error=TransientSourceError("live_page", CHANNEL, "503"))

    report = _merger(youtube_settings, db, platform, scraper).run_cycle()

    assert report.written == 1
    assert scraper.calls == 1


def test_member_that_failed_is_stored_by_the_next_cycle(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("bad", end="2024-01-02T02:00:00Z")
    platform.add_video("good", end="2024-01-01T02:00:00Z")
    platform.failing = {"bad"}
    platform.set_playlist(ListMember("bad", CHANNEL), ListMember("good", CHANNEL))
    merger = _merger(youtube_settings, db, platform, FakeScraper())
    with pytest.raises(PartialCycleError):
        merger.run_cycle()
    assert db.latest_token("playlist") == ""

    platform.failing = set()
    report = merger.run_cycle()

    assert set(db.load_vods()) == {"bad", "good"}
    assert report.written == 1
    assert report.not_modified == 1
    assert db.latest_token("playlist") == platform.playlist_etag


def test_live_stream_that_failed_is_searched_again(
    db: DatabaseManager, platform: FakePlatform, youtube_settings: YouTubeSyncSettings
) -> None:
    platform.add_video("live1", start="2024-03-15T11:00:00Z")
    platform.live_ids = ["live1"]
    platform.failing = {"live1"}
    merger = _merger(youtube_settings, db, platform, FakeScraper())
    with pytest.raises(PartialCycleError):
        merger.run_cycle()
    assert db.latest_token("live_search") == ""

    platform.failing = set()
    merger.run_cycle()

    stored = stored_vod(db, "live1")
    assert stored is not None
    assert stored.backfill is Backfill.LIVE
    assert db.latest_token("live_search") == platform.search_etag

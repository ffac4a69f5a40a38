"""Merge live-stream discovery probes and the playlist backfill into one reconciliation pass."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol

from ..config import YouTubeSyncSettings
from ..db import DatabaseManager
from ..errors import FailedUnit, MalformedInputError, PartialCycleError, SyncError, TransientSourceError
from ..models import CycleReport, ListMember, VideoDetail, VodRecord
from .conditional import CycleTokens, FetchResult, fetch_conditional, fetch_feed
from .reconciler import Outcome, ReconcilePath, Reconciler, parse_timestamp

logger = logging.getLogger(__name__)

LIVE_SEARCH_FEED = "live_search"
PLAYLIST_FEED = "playlist"
FULL_PAGE_SIZE = 50


class ListPageLike(Protocol):
    members: list[ListMember]
    next_cursor: str | None


class VideoPlatform(Protocol):
    def search_live(self, channel_id: str, token: str) -> FetchResult[list[str]]: ...

    def get_detail(self, video_id: str, token: str) -> FetchResult[VideoDetail | None]: ...

    def get_list_page(
        self, list_id: str, token: str, page_cursor: str | None = None, page_size: int = 45
    ) -> FetchResult[ListPageLike]: ...


class LiveScraper(Protocol):
    def scrape_live_id(self, channel_id: str) -> str | None: ...


@dataclass(frozen=True, slots=True)
class Discovery:
    source: str
    video_id: str


class DiscoveryMailbox:
    """Bounded per-cycle hand-off from the probes to the reconciliation stage.

    Posts arriving after :meth:`close` or beyond capacity are dropped; the same
    live video is rediscovered from source on the next cycle.
    """

    def __init__(self, capacity: int = 8) -> None:
        self._queue: queue.Queue[Discovery] = queue.Queue(maxsize=capacity)
        self._lock = threading.Lock()
        self._open = True
        self.dropped = 0

    def post(self, source: str, video_id: str) -> bool:
        with self._lock:
            if self._open:
                try:
                    self._queue.put_nowait(Discovery(source, video_id))
                    return True
                except queue.Full:
                    pass
            self.dropped += 1
        logger.debug("Dropped %s discovery of %s; reconciliation stage already closed or full", source, video_id)
        return False

    def close(self) -> list[Discovery]:
        """Stop accepting posts and return everything delivered so far."""
        with self._lock:
            self._open = False
        drained: list[Discovery] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained


class DiscoverySourceMerger:
    """One YouTube reconciliation cycle: probes, playlist backfill, live merge, stale sweep."""

    def __init__(
        self,
        settings: YouTubeSyncSettings,
        store: DatabaseManager,
        platform: VideoPlatform,
        scraper: LiveScraper,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.platform = platform
        self.scraper = scraper
        self.reconciler = Reconciler(settings.channel_id, store)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep

    def run_cycle(self, task: str = "youtube") -> CycleReport:
        report = CycleReport(task=task)
        failures: list[FailedUnit] = []
        baseline = self.store.load_vods()
        mailbox = DiscoveryMailbox()
        tokens = CycleTokens(self.store)

        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="probe")
        try:
            probes: dict[Future[None], str] = {
                executor.submit(self._search_probe, mailbox, tokens): LIVE_SEARCH_FEED,
                executor.submit(self._scrape_probe, mailbox): "live_page",
            }
            self._backfill_pass(baseline, report, failures, tokens)
            done, pending = wait(probes, timeout=self.settings.probe_timeout_seconds)
            for future in done:
                self._collect_probe_error(probes[future], future, failures)
            for future in pending:
                logger.warning("Probe %s still running; a late result will be dropped", probes[future])
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        discoveries = mailbox.close()
        tokens.seal()
        live_ids = self._reconcile_live(discoveries, baseline, report, failures)
        self._stale_sweep(baseline, live_ids, report, failures)

        if failures:
            kept = tokens.discard()
            if kept:
                logger.info("Keeping previous tokens for %s until a clean cycle", ", ".join(kept))
            raise PartialCycleError(task, failures)
        tokens.commit()
        return report

    # ------------------------------------------------------------------ #
    # Probes
    # ------------------------------------------------------------------ #

    def _search_probe(self, mailbox: DiscoveryMailbox, tokens: CycleTokens) -> None:
        channel_id = self.settings.channel_id
        outcome = fetch_conditional(
            "live_search",
            LIVE_SEARCH_FEED,
            lambda token: self.platform.search_live(channel_id, token),
            self.store.latest_token(LIVE_SEARCH_FEED),
        )
        delivered = True
        for video_id in outcome.payload or []:
            logger.debug("[API] Found a currently running stream with ID %s", video_id)
            delivered = mailbox.post("search", video_id) and delivered
        if not outcome.payload:
            logger.debug("[API] No stream found")
        # the token only moves on once every id reached the reconciliation stage
        if delivered:
            tokens.stage(LIVE_SEARCH_FEED, outcome.token)

    def _scrape_probe(self, mailbox: DiscoveryMailbox) -> None:
        video_id = self.scraper.scrape_live_id(self.settings.channel_id)
        if not video_id:
            logger.debug("[SCRAPER] No stream found")
            return
        logger.debug("[SCRAPER] Found a currently running stream with ID %s", video_id)
        mailbox.post("scrape", video_id)

    @staticmethod
    def _collect_probe_error(name: str, future: Future[None], failures: list[FailedUnit]) -> None:
        exc = future.exception()
        if exc is None:
            return
        if name == "live_page":
            logger.warning("Live page scrape failed: %s", exc)
            return
        if not isinstance(exc, SyncError):
            raise exc
        logger.error("Live search probe failed: %s", exc)
        failures.append(FailedUnit(exc.resource_kind, exc.resource_id, str(exc)))

    # ------------------------------------------------------------------ #
    # Backfill pass
    # ------------------------------------------------------------------ #

    def _fetch_members(self, report: CycleReport, tokens: CycleTokens) -> list[ListMember]:
        list_id = self.settings.playlist_id
        if not self.settings.fetch_everything:
            outcome = fetch_feed(
                self.store,
                PLAYLIST_FEED,
                lambda token: self.platform.get_list_page(list_id, token, None, self.settings.page_size),
                kind="playlist",
                record=tokens.stage,
            )
            if outcome.not_modified or outcome.payload is None:
                logger.debug("Got a 304 Not Modified for the playlist, skipping the backfill pass")
                report.not_modified += 1
                return []
            return list(outcome.payload.members)

        members: list[ListMember] = []
        cursor: str | None = None
        while True:
            page_cursor = cursor
            outcome = fetch_conditional(
                "playlist",
                list_id,
                lambda _token: self.platform.get_list_page(list_id, "", page_cursor, FULL_PAGE_SIZE),
                "",
            )
            if outcome.payload is None:
                break
            members.extend(outcome.payload.members)
            cursor = outcome.payload.next_cursor
            if not cursor:
                break
        logger.info("Fetched %d playlist members across all pages", len(members))
        return members

    def _backfill_pass(
        self,
        baseline: dict[str, VodRecord],
        report: CycleReport,
        failures: list[FailedUnit],
        tokens: CycleTokens,
    ) -> None:
        for index, member in enumerate(self._fetch_members(report, tokens)):
            if index and self.settings.member_delay_seconds:
                self.sleep(self.settings.member_delay_seconds)
            if member.owner_channel_id != self.settings.channel_id:
                logger.debug("Video with ID %s is private or foreign, skipping", member.video_id)
                report.skipped += 1
                continue
            prior = baseline.get(member.video_id)
            detail = self._fetch_detail(member.video_id, prior.token if prior else "", report, failures)
            if detail is not None:
                self._apply(detail, prior, ReconcilePath.MEMBER, baseline, report)

    # ------------------------------------------------------------------ #
    # Live merge and stale sweep
    # ------------------------------------------------------------------ #

    def _reconcile_live(
        self,
        discoveries: list[Discovery],
        baseline: dict[str, VodRecord],
        report: CycleReport,
        failures: list[FailedUnit],
    ) -> set[str]:
        seen: set[str] = set()
        for discovery in discoveries:
            if discovery.video_id in seen:
                continue
            seen.add(discovery.video_id)
            logger.debug("[%s] Processing current stream with ID %s", discovery.source, discovery.video_id)
            detail = self._fetch_detail(discovery.video_id, "", report, failures)
            if detail is not None:
                self._apply(detail, baseline.get(discovery.video_id), ReconcilePath.LIVE, baseline, report)
        if not discoveries:
            logger.debug("No current stream to process")
        return seen

    def _stale_sweep(
        self,
        baseline: dict[str, VodRecord],
        live_ids: set[str],
        report: CycleReport,
        failures: list[FailedUnit],
    ) -> None:
        now = self.clock()
        for record in list(baseline.values()):
            if record.id in live_ids or not record.end_is_provisional:
                continue
            try:
                started = parse_timestamp(record.start_time)
            except ValueError:
                logger.error("VOD %s has an unparsable start time %r", record.id, record.start_time)
                report.malformed += 1
                continue
            if now - started < self.settings.stale_after:
                continue
            detail = self._fetch_detail(record.id, "", report, failures)
            if detail is None:
                continue
            path = ReconcilePath.MEMBER if detail.actual_end_time else ReconcilePath.STALE
            self._apply(detail, record, path, baseline, report)

    # ------------------------------------------------------------------ #
    # Per-entity helpers
    # ------------------------------------------------------------------ #

    def _fetch_detail(
        self,
        video_id: str,
        token: str,
        report: CycleReport,
        failures: list[FailedUnit],
    ) -> VideoDetail | None:
        try:
            outcome = fetch_conditional(
                "video", video_id, lambda sent: self.platform.get_detail(video_id, sent), token
            )
        except TransientSourceError as exc:
            logger.warning("Couldn't get video info for %s: %s", video_id, exc)
            failures.append(FailedUnit("video", video_id, str(exc)))
            return None
        except MalformedInputError as exc:
            logger.error("Malformed video payload: %s", exc)
            report.malformed += 1
            return None
        if outcome.not_modified:
            report.not_modified += 1
            return None
        if outcome.payload is None:
            report.skipped += 1
            return None
        return outcome.payload

    def _apply(
        self,
        detail: VideoDetail,
        prior: VodRecord | None,
        path: ReconcilePath,
        baseline: dict[str, VodRecord],
        report: CycleReport,
    ) -> None:
        try:
            result = self.reconciler.reconcile(detail, prior, path)
        except MalformedInputError as exc:
            logger.error("Couldn't reconcile video: %s", exc)
            report.malformed += 1
            return
        if result.outcome is Outcome.WRITTEN:
            report.written += 1
        elif result.outcome is Outcome.UNCHANGED:
            report.unchanged += 1
        else:
            report.skipped += 1
        if result.record is not None:
            baseline[detail.id] = result.record

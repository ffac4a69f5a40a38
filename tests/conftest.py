from __future__ import annotations

import sqlite3
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Literal

import pytest


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _ensure_sys_path() -> None:
    root = str(_project_root())
    if root not in sys.path:
        sys.path.insert(0, root)


_ensure_sys_path()

from vodsync.config import YouTubeSyncSettings  # noqa: E402
from vodsync.core.conditional import Fetched, FetchResult, NotModified  # noqa: E402
from vodsync.db import DatabaseManager  # noqa: E402
from vodsync.integrations import DriveFile, FOLDER_MIME_TYPE, SPREADSHEET_MIME_TYPE, Worksheet  # noqa: E402
from vodsync.integrations.youtube import ListPage  # noqa: E402
from vodsync.models import ListMember, VideoDetail, VodRecord  # noqa: E402

CHANNEL = "UC_channel"
PLAYLIST = "PL_vods"
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakePlatform:
    """In-memory video platform honouring ETags like the real API."""

    def __init__(self) -> None:
        self.details: dict[str, VideoDetail | None] = {}
        self.etags: dict[str, str] = {}
        self.failing: set[str] = set()
        self.live_ids: list[str] = []
        self.search_etag = "search-1"
        self.pages: list[ListPage] = [ListPage()]
        self.playlist_etag = "playlist-1"
        self.detail_calls: list[tuple[str, str]] = []
        self.page_calls: list[tuple[str, str | None, int]] = []

    def add_video(
        self,
        video_id: str,
        *,
        start: str | None = "2024-01-01T00:00:00Z",
        end: str | None = None,
        channel: str = CHANNEL,
        title: str = "Stream",
        etag: str | None = None,
    ) -> VideoDetail:
        detail = VideoDetail(
            id=video_id,
            channel_id=channel,
            published_at="2024-01-01T00:00:00Z",
            title=title,
            thumbnail=f"https://i.ytimg.com/vi/{video_id}/mqdefault.jpg",
            actual_start_time=start,
            actual_end_time=end,
        )
        self.details[video_id] = detail
        self.etags[video_id] = etag or f"etag-{video_id}-{title}-{end}"
        return detail

    def set_playlist(self, *members: ListMember) -> None:
        self.pages = [ListPage(members=list(members))]

    def search_live(self, channel_id: str, token: str) -> FetchResult[list[str]]:
        if token and token == self.search_etag:
            return NotModified(token=self.search_etag)
        return Fetched(payload=list(self.live_ids), token=self.search_etag)

    def get_detail(self, video_id: str, token: str) -> FetchResult[VideoDetail | None]:
        self.detail_calls.append((video_id, token))
        if video_id in self.failing:
            raise RuntimeError(f"connection reset fetching {video_id}")
        etag = self.etags.get(video_id, "etag-missing")
        if token and token == etag:
            return NotModified(token=etag)
        detail = self.details.get(video_id)
        if detail is None:
            return Fetched(payload=None, token=etag)
        return Fetched(payload=replace(detail, token=etag), token=etag)

    def get_list_page(
        self, list_id: str, token: str, page_cursor: str | None = None, page_size: int = 45
    ) -> FetchResult[ListPage]:
        self.page_calls.append((token, page_cursor, page_size))
        if token and token == self.playlist_etag:
            return NotModified(token=self.playlist_etag)
        index = int(page_cursor) if page_cursor else 0
        page = self.pages[index]
        next_cursor = str(index + 1) if index + 1 < len(self.pages) else None
        return Fetched(payload=ListPage(members=page.members, next_cursor=next_cursor), token=self.playlist_etag)


class FakeScraper:
    def __init__(self, live_id: str | None = None, error: Exception | None = None) -> None:
        self.live_id = live_id
        self.error = error
        self.calls = 0

    def scrape_live_id(self, channel_id: str) -> str | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.live_id


class FakeDrive:
    def __init__(self, tree: dict[str, list[DriveFile]]) -> None:
        self.tree = tree

    def list(self, folder_id: str) -> list[DriveFile]:
        return list(self.tree.get(folder_id, []))


class FakeSheets:
    def __init__(self, books: dict[str, list[Worksheet]]) -> None:
        self.books = books
        self.calls: list[str] = []

    def fetch_worksheets(self, sheet_id: str) -> list[Worksheet]:
        self.calls.append(sheet_id)
        return self.books[sheet_id]


def folder(file_id: str, name: str) -> DriveFile:
    return DriveFile(id=file_id, name=name, mime_type=FOLDER_MIME_TYPE)


def spreadsheet(file_id: str, name: str) -> DriveFile:
    return DriveFile(id=file_id, name=name, mime_type=SPREADSHEET_MIME_TYPE)


def stored_vod(store: DatabaseManager, vod_id: str) -> VodRecord | None:
    return store.load_vods().get(vod_id)


def manifest_rows(store: DatabaseManager, role: Literal["main", "secondary"], platform: str, group_id: str) -> list[sqlite3.Row]:
    with store.cursor() as cur:
        cur.execute(
            f"SELECT * FROM manifest_entries WHERE {role}_platform = ? AND {role}_id = ? ORDER BY rowid",
            (platform, group_id),
        )
        return cur.fetchall()


def manifest_row_count(store: DatabaseManager) -> int:
    with store.cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM manifest_entries")
        return int(cur.fetchone()[0])


def month_link(store: DatabaseManager, date: str) -> str | None:
    with store.cursor() as cur:
        cur.execute("SELECT sheet_id FROM manifest_links WHERE date = ?", (date,))
        row = cur.fetchone()
    return row["sheet_id"] if row else None


@pytest.fixture
def db(tmp_path: Path) -> Iterator[DatabaseManager]:
    manager = DatabaseManager(tmp_path / "vodsync.db")
    yield manager
    manager.close()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def youtube_settings() -> YouTubeSyncSettings:
    return YouTubeSyncSettings(
        channel_id=CHANNEL,
        playlist_id=PLAYLIST,
        interval_seconds=300.0,
        probe_timeout_seconds=5.0,
    )

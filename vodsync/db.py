"""SQLite persistence for VOD records, feed tokens, the manifest and job health."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Literal, Optional

from .errors import StorageError
from .models import Backfill, GroupRole, ManifestRow, VodRecord, WorksheetBatch

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS vods (
    id TEXT PRIMARY KEY,
    published_at TEXT NOT NULL,
    title TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    thumbnail TEXT NOT NULL,
    token TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    backfill TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS feed_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed TEXT NOT NULL,
    token TEXT NOT NULL,
    observed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_feed_tokens_feed ON feed_tokens(feed, id);

CREATE TABLE IF NOT EXISTS manifest_fingerprints (
    platform TEXT NOT NULL,
    id TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    PRIMARY KEY (platform, id)
);

CREATE TABLE IF NOT EXISTS manifest_entries (
    date_added TEXT NOT NULL,
    date_streamed TEXT,
    main_platform TEXT NOT NULL,
    main_id TEXT,
    secondary_platform TEXT,
    secondary_id TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    main_stamp INTEGER NOT NULL DEFAULT 0,
    secondary_stamp INTEGER NOT NULL DEFAULT 0,
    game TEXT NOT NULL,
    subject TEXT NOT NULL,
    topic TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_manifest_main ON manifest_entries(main_platform, main_id);
CREATE INDEX IF NOT EXISTS idx_manifest_secondary ON manifest_entries(secondary_platform, secondary_id);

CREATE TABLE IF NOT EXISTS manifest_links (
    date TEXT PRIMARY KEY,
    sheet_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS job_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    duration_ms REAL NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_job_runs_job_id ON job_runs(job_id);
CREATE TABLE IF NOT EXISTS health_checks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    component TEXT NOT NULL,
    status TEXT NOT NULL,
    detail TEXT,
    observed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_health_component ON health_checks(component);
"""

_VOD_COLUMNS = "id, published_at, title, start_time, end_time, thumbnail, token, fingerprint, backfill"


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class DatabaseManager:
    """Thread-safe SQLite manager; every thread gets its own connection."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._local = threading.local()
        self._init_schema_once()

    # ------------------------------------------------------------------ #
    # Connection handling
    # ------------------------------------------------------------------ #

    def _get_conn(self) -> sqlite3.Connection:
        """Return a per-thread connection to the database."""
        if not hasattr(self._local, "conn"):
            conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None, timeout=30)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            logger.debug("Opened thread-local DB connection at %s", self.path)
        return self._local.conn

    def _init_schema_once(self) -> None:
        """Ensure the schema exists once at startup."""
        try:
            conn = sqlite3.connect(self.path)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
            conn.close()
        except sqlite3.Error as exc:
            raise StorageError("database", str(self.path), f"could not create schema: {exc}") from exc
        logger.debug("Database schema ensured at %s", self.path)

    # ------------------------------------------------------------------ #
    # Context managers
    # ------------------------------------------------------------------ #

    @contextmanager
    def cursor(self, kind: str = "database", resource_id: str | None = None) -> Iterator[sqlite3.Cursor]:
        """Provide an autocommit cursor for single statements."""
        cur = self._get_conn().cursor()
        try:
            yield cur
        except sqlite3.Error as exc:
            logger.exception("Database operation failed (%s %s)", kind, resource_id)
            raise StorageError(kind, resource_id, str(exc)) from exc
        finally:
            cur.close()

    @contextmanager
    def transaction(self, kind: str = "database", resource_id: str | None = None) -> Iterator[sqlite3.Cursor]:
        """Run the enclosed statements all-or-nothing."""
        conn = self._get_conn()
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            cur.close()
            raise StorageError(kind, resource_id, f"could not begin transaction: {exc}") from exc
        try:
            yield cur
        except BaseException as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.warning("Rolled back transaction for %s %s", kind, resource_id)
            if isinstance(exc, sqlite3.Error):
                raise StorageError(kind, resource_id, str(exc)) from exc
            raise
        else:
            try:
                cur.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(kind, resource_id, f"commit failed: {exc}") from exc
        finally:
            cur.close()

    # ------------------------------------------------------------------ #
    # VOD records
    # ------------------------------------------------------------------ #

    def load_vods(self) -> dict[str, VodRecord]:
        """Load every stored VOD keyed by id."""
        with self.cursor("vod") as cur:
            cur.execute(f"SELECT {_VOD_COLUMNS} FROM vods")
            return {row["id"]: self._vod_from_row(row) for row in cur.fetchall()}

    def upsert_vod(self, record: VodRecord) -> None:
        """Write the full record; callers gate this on a fingerprint change."""
        with self.cursor("vod", record.id) as cur:
            cur.execute(
                """
                INSERT INTO vods(id, published_at, title, start_time, end_time, thumbnail, token, fingerprint, backfill)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    published_at = excluded.published_at,
                    title = excluded.title,
                    start_time = excluded.start_time,
                    end_time = excluded.end_time,
                    thumbnail = excluded.thumbnail,
                    token = excluded.token,
                    fingerprint = excluded.fingerprint,
                    backfill = excluded.backfill,
                    updated_at = datetime('now')
                """,
                (
                    record.id,
                    record.published_at,
                    record.title,
                    record.start_time,
                    record.end_time,
                    record.thumbnail,
                    record.token,
                    record.fingerprint,
                    record.backfill.value if record.backfill else None,
                ),
            )

    # ------------------------------------------------------------------ #
    # Feed tokens
    # ------------------------------------------------------------------ #

    def latest_token(self, feed: str) -> str:
        """Return the most recently observed token for a feed, or an empty string."""
        with self.cursor("token", feed) as cur:
            cur.execute("SELECT token FROM feed_tokens WHERE feed = ? ORDER BY id DESC LIMIT 1", (feed,))
            row = cur.fetchone()
        if row is None:
            logger.debug("Couldn't find any tokens for feed %s", feed)
            return ""
        return row["token"]

    def record_token(self, feed: str, token: str) -> None:
        with self.cursor("token", feed) as cur:
            cur.execute("INSERT INTO feed_tokens(feed, token) VALUES(?, ?)", (feed, token))

    def prune_tokens(self, feed: str, keep: int = 50) -> int:
        """Drop token history beyond the newest ``keep`` entries."""
        with self.cursor("token", feed) as cur:
            cur.execute(
                """
                DELETE FROM feed_tokens
                WHERE feed = ? AND id NOT IN (
                    SELECT id FROM feed_tokens WHERE feed = ? ORDER BY id DESC LIMIT ?
                )
                """,
                (feed, feed, keep),
            )
            return cur.rowcount

    # ------------------------------------------------------------------ #
    # Manifest
    # ------------------------------------------------------------------ #

    def manifest_fingerprints(self, keys: Iterable[tuple[str, str]]) -> dict[tuple[str, str], str]:
        """Stored fingerprints for the given (platform, id) keys; absent keys are omitted."""
        found: dict[tuple[str, str], str] = {}
        with self.cursor("manifest") as cur:
            for platform, group_id in keys:
                cur.execute(
                    "SELECT fingerprint FROM manifest_fingerprints WHERE platform = ? AND id = ? LIMIT 1",
                    (platform, group_id),
                )
                row = cur.fetchone()
                if row is not None:
                    found[(platform, group_id)] = row["fingerprint"]
        return found

    def apply_worksheet_batch(self, batch: WorksheetBatch) -> int:
        """Apply every planned write of one worksheet in a single transaction.

        Returns the number of manifest rows inserted. Any failure rolls the whole
        worksheet back, fingerprints included, so it is re-planned next cycle.
        """
        if batch.is_empty:
            return 0
        inserted = 0
        resource = f"{batch.sheet_id}/{batch.worksheet_title}"
        with self.transaction("worksheet", resource) as cur:
            for group in batch.replacements:
                self._delete_group_rows(cur, group.role, group.platform, group.id)
                for row in group.rows:
                    self._insert_entry(cur, row)
                    inserted += 1
            for (platform, group_id), value in batch.fingerprints.items():
                cur.execute(
                    """
                    INSERT INTO manifest_fingerprints(platform, id, fingerprint) VALUES(?, ?, ?)
                    ON CONFLICT(platform, id) DO UPDATE SET fingerprint = excluded.fingerprint
                    """,
                    (platform, group_id, value),
                )
            if batch.link_key:
                cur.execute(
                    "INSERT INTO manifest_links(date, sheet_id) VALUES(?, ?) ON CONFLICT DO NOTHING",
                    (batch.link_key, batch.sheet_id),
                )
        return inserted

    @staticmethod
    def _delete_group_rows(cur: sqlite3.Cursor, role: GroupRole, platform: str, group_id: str) -> None:
        if role == "main":
            cur.execute("DELETE FROM manifest_entries WHERE main_platform = ? AND main_id = ?", (platform, group_id))
        else:
            cur.execute(
                "DELETE FROM manifest_entries WHERE secondary_platform = ? AND secondary_id = ?",
                (platform, group_id),
            )

    def _insert_entry(self, cur: sqlite3.Cursor, row: ManifestRow) -> None:
        cur.execute(
            """
            INSERT INTO manifest_entries(
                date_added, date_streamed, main_platform, main_id, secondary_platform, secondary_id,
                start_time, end_time, main_stamp, secondary_stamp, game, subject, topic
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _iso(row.date_added),
                row.date_streamed.isoformat() if row.date_streamed else None,
                row.main_platform,
                row.main_id or None,
                row.secondary_platform,
                row.secondary_id or None,
                row.start,
                row.end,
                row.main_stamp,
                row.secondary_stamp,
                row.game,
                row.subject,
                row.topic,
            ),
        )

    # ------------------------------------------------------------------ #
    # Job health
    # ------------------------------------------------------------------ #

    def record_job_run(
        self,
        *,
        job_id: str,
        status: Literal["success", "failure"],
        started_at: datetime,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        """Persist job execution metadata for health checks."""
        with self.cursor("job_run", job_id) as cur:
            cur.execute(
                """
                INSERT INTO job_runs(job_id, status, started_at, duration_ms, error)
                VALUES(?, ?, ?, ?, ?)
                """,
                (job_id, status, _iso(started_at), float(duration_ms), error),
            )

    def record_health(
        self,
        *,
        component: str,
        status: Literal["pass", "warn", "fail"],
        detail: str | None = None,
    ) -> None:
        with self.cursor("health", component) as cur:
            cur.execute(
                "INSERT INTO health_checks(component, status, detail) VALUES(?, ?, ?)",
                (component, status, detail),
            )

    def close(self) -> None:
        conn: Optional[sqlite3.Connection] = getattr(self._local, "conn", None)
        if conn:
            conn.close()
            del self._local.conn
            logger.debug("Thread-local database connection closed.")

    # ------------------------------------------------------------------ #
    # Utility
    # ------------------------------------------------------------------ #

    @staticmethod
    def _vod_from_row(row: sqlite3.Row) -> VodRecord:
        return VodRecord(
            id=row["id"],
            published_at=row["published_at"],
            title=row["title"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            thumbnail=row["thumbnail"],
            token=row["token"],
            fingerprint=row["fingerprint"],
            backfill=Backfill(row["backfill"]) if row["backfill"] else None,
        )

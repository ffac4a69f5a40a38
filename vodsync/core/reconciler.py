"""Reconcile one freshly fetched video detail against its stored record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

from ..errors import MalformedInputError
from ..models import Backfill, VideoDetail, VodRecord
from .fingerprint import fingerprint

logger = logging.getLogger(__name__)

LIVE_END_BUFFER = timedelta(minutes=15)
STALE_END_HORIZON = timedelta(hours=24)


class ReconcilePath(str, Enum):
    """Which caller path triggered reconciliation; selects the end-time backfill."""

    LIVE = "live"
    MEMBER = "member"
    STALE = "stale"


class Outcome(str, Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"
    FOREIGN = "foreign"
    NOT_A_STREAM = "not_a_stream"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    outcome: Outcome
    record: VodRecord | None = None


class VodStore(Protocol):
    def upsert_vod(self, record: VodRecord) -> None: ...


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the platform."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def backfill_end_time(start_time: str, path: ReconcilePath) -> str | None:
    """Synthesise a provisional end time from the start time for the given path."""
    if path is ReconcilePath.LIVE:
        offset = LIVE_END_BUFFER
    elif path is ReconcilePath.STALE:
        offset = STALE_END_HORIZON
    else:
        return None
    return format_timestamp(parse_timestamp(start_time) + offset)


class Reconciler:
    """Applies backfill, fingerprints and performs the guarded upsert for one entity."""

    def __init__(self, channel_id: str, store: VodStore) -> None:
        self.channel_id = channel_id
        self.store = store

    def reconcile(
        self,
        detail: VideoDetail,
        prior: VodRecord | None,
        path: ReconcilePath,
    ) -> ReconcileResult:
        if detail.channel_id != self.channel_id:
            logger.debug("Video %s belongs to channel %s, skipping", detail.id, detail.channel_id)
            return ReconcileResult(Outcome.FOREIGN, prior)

        start_time = detail.actual_start_time
        if not start_time:
            logger.debug("Video %s doesn't have livestream info, skipping", detail.id)
            return ReconcileResult(Outcome.NOT_A_STREAM, prior)

        end_time, backfill = self._resolve_end_time(detail, prior, path)
        value = fingerprint(
            detail.id,
            detail.published_at,
            detail.title,
            start_time,
            end_time,
            detail.thumbnail,
            detail.token,
        )
        if prior is not None and prior.fingerprint == value:
            logger.debug("VOD with ID %s not changed, skipping", detail.id)
            return ReconcileResult(Outcome.UNCHANGED, prior)

        record = VodRecord(
            id=detail.id,
            published_at=detail.published_at,
            title=detail.title,
            start_time=start_time,
            end_time=end_time,
            thumbnail=detail.thumbnail,
            token=detail.token,
            fingerprint=value,
            backfill=backfill,
        )
        self.store.upsert_vod(record)
        logger.debug("Added/updated the VOD with ID %s (%s path)", detail.id, path.value)
        return ReconcileResult(Outcome.WRITTEN, record)

    @staticmethod
    def _resolve_end_time(
        detail: VideoDetail,
        prior: VodRecord | None,
        path: ReconcilePath,
    ) -> tuple[str | None, Backfill | None]:
        if detail.actual_end_time:
            return detail.actual_end_time, None
        start_time = detail.actual_start_time or ""
        try:
            synthesised = backfill_end_time(start_time, path)
        except ValueError as exc:
            raise MalformedInputError("video", detail.id, f"unparsable start time {start_time!r}") from exc
        if synthesised is not None:
            return synthesised, Backfill(path.value)
        # a member fetch without a real end keeps whatever provisional end is on file
        if prior is not None and prior.backfill is not None and prior.start_time == start_time:
            return prior.end_time, prior.backfill
        return None, None

"""Domain records exchanged between the synchronisation stages and the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Literal

GroupRole = Literal["main", "secondary"]


class Backfill(str, Enum):
    """Which heuristic synthesised a VOD's end time, if any."""

    LIVE = "live"
    STALE = "stale"


@dataclass(slots=True)
class VideoDetail:
    """Normalised detail payload for one video as reported by the platform."""

    id: str
    channel_id: str | None
    published_at: str
    title: str
    thumbnail: str
    actual_start_time: str | None = None
    actual_end_time: str | None = None
    token: str = ""


@dataclass(slots=True)
class VodRecord:
    """Stored state of one VOD, including the fingerprint of its mutable fields."""

    id: str
    published_at: str
    title: str
    start_time: str
    end_time: str | None
    thumbnail: str
    token: str
    fingerprint: str
    backfill: Backfill | None = None

    @property
    def end_is_provisional(self) -> bool:
        return self.end_time is None or self.backfill is Backfill.LIVE


@dataclass(frozen=True, slots=True)
class ListMember:
    """One playlist entry; only the id and owning channel matter for reconciliation."""

    video_id: str
    owner_channel_id: str | None = None


@dataclass(slots=True)
class ManifestRow:
    """A manifest row that references at least one platform VOD."""

    date_added: datetime
    date_streamed: date | None
    main_platform: str
    main_id: str | None
    secondary_platform: str | None
    secondary_id: str | None
    start: str
    end: str
    main_stamp: int
    secondary_stamp: int
    game: str
    subject: str
    topic: str

    def hash_fields(self) -> tuple[object, ...]:
        # date_added and date_streamed do not feed the fingerprint
        return (
            self.main_id,
            self.secondary_id,
            self.start,
            self.end,
            self.main_stamp,
            self.secondary_stamp,
            self.game,
            self.subject,
            self.topic,
        )


@dataclass(slots=True)
class ManifestGroup:
    """Every row of one worksheet that references a single platform id, in row order."""

    role: GroupRole
    platform: str
    id: str
    rows: list[ManifestRow] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.platform, self.id)


@dataclass(slots=True)
class WorksheetBatch:
    """All writes planned for one worksheet, applied in a single transaction."""

    sheet_id: str
    worksheet_title: str
    replacements: list[ManifestGroup] = field(default_factory=list)
    fingerprints: dict[tuple[str, str], str] = field(default_factory=dict)
    collapsed: dict[tuple[str, str], tuple[str, str]] = field(default_factory=dict)
    link_key: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.fingerprints


@dataclass(slots=True)
class CycleReport:
    """Counters describing what one task cycle did."""

    task: str
    written: int = 0
    unchanged: int = 0
    skipped: int = 0
    not_modified: int = 0
    malformed: int = 0

    def as_dict(self) -> dict[str, int | str]:
        return {
            "task": self.task,
            "written": self.written,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "not_modified": self.not_modified,
            "malformed": self.malformed,
        }

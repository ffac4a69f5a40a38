"""Header-to-column mapping for manifest worksheets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

HeaderMatcher = Callable[[str], bool]
FieldSpec = tuple[str, HeaderMatcher]

REQUIRED_HEADERS: tuple[str, ...] = ("Date", "Topic")

DATE = "date"
START = "start"
END = "end"
GAME = "game"
SUBJECT = "subject"
TOPIC = "topic"
MAIN_LINK = "main_link"
SECONDARY_LINK = "secondary_link"


def header_contains(*needles: str) -> HeaderMatcher:
    """Case-insensitive substring matcher over a header cell."""
    lowered = tuple(needle.lower() for needle in needles)

    def match(cell: str) -> bool:
        text = cell.lower()
        return any(needle in text for needle in lowered)

    return match


def is_manifest_worksheet(header: Sequence[str]) -> bool:
    """Only worksheets carrying exact ``Date`` and ``Topic`` header cells are manifests."""
    return all(name in header for name in REQUIRED_HEADERS)


def manifest_fields(main_platform: str, secondary_platform: str | None) -> list[FieldSpec]:
    """Ordered field matchers for a manifest with one main and an optional secondary link column.

    A single ``VOD`` column can serve as the main link column; a generic
    ``Link`` column serves as the secondary one.
    """
    fields: list[FieldSpec] = [
        (DATE, header_contains("date")),
        (START, header_contains("start")),
        (END, header_contains("end")),
        (GAME, header_contains("game")),
        (SUBJECT, header_contains("subject")),
        (TOPIC, header_contains("topic")),
        (MAIN_LINK, header_contains(main_platform, "vod")),
    ]
    if secondary_platform:
        fields.append((SECONDARY_LINK, header_contains(secondary_platform, "link")))
    return fields


@dataclass(frozen=True, slots=True)
class ColumnMap:
    """Field name to column offset, resolved once per worksheet."""

    offsets: dict[str, int]

    @property
    def width(self) -> int:
        return max(self.offsets.values(), default=-1) + 1

    def pad(self, row: Sequence[str]) -> list[str]:
        cells = list(row)
        if len(cells) < self.width:
            cells.extend([""] * (self.width - len(cells)))
        return cells

    def value(self, cells: Sequence[str], field: str) -> str:
        offset = self.offsets.get(field)
        if offset is None:
            return ""
        return cells[offset]

    def link_offsets(self) -> list[int]:
        seen: list[int] = []
        for field in (MAIN_LINK, SECONDARY_LINK):
            offset = self.offsets.get(field)
            if offset is not None and offset not in seen:
                seen.append(offset)
        return seen


def resolve_columns(header: Sequence[str], fields: Sequence[FieldSpec]) -> ColumnMap:
    """Map each field to the first header cell its matcher accepts."""
    offsets: dict[str, int] = {}
    for name, matcher in fields:
        for index, cell in enumerate(header):
            if matcher(cell):
                offsets[name] = index
                break
    return ColumnMap(offsets=offsets)

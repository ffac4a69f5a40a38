"""Select the monthly manifest spreadsheets to process from the Drive folder."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Protocol

from ..integrations import DriveFile

logger = logging.getLogger(__name__)

TODAY = "Today"
ONE_MONTH_AGO = "OneMonthAgo"
PLUS_SIX_DAYS = "PlusSixDays"


class FolderLister(Protocol):
    def list(self, folder_id: str) -> list[DriveFile]: ...


@dataclass(frozen=True, slots=True)
class ManifestSheet:
    key: str
    id: str
    name: str


def previous_month(day: date) -> date:
    first = day.replace(day=1)
    return first - timedelta(days=1)


def target_months(today: date) -> list[tuple[str, date]]:
    """Keys of the default window in priority order; a month claimed by an earlier key is not repeated."""
    return [
        (TODAY, today),
        (ONE_MONTH_AGO, previous_month(today)),
        (PLUS_SIX_DAYS, today + timedelta(days=6)),
    ]


class SheetCollector:
    """Walks ``<folder>/<year>/<MM ...>`` and picks the spreadsheets to sync."""

    def __init__(
        self,
        drive: FolderLister,
        folder_id: str,
        *,
        all_sheets: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.drive = drive
        self.folder_id = folder_id
        self.all_sheets = all_sheets
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _spreadsheets(self, year: DriveFile) -> list[DriveFile]:
        return [f for f in self.drive.list(year.id) if f.is_spreadsheet and len(f.name) >= 2]

    def collect(self) -> list[ManifestSheet]:
        years = [f for f in self.drive.list(self.folder_id) if f.is_folder]
        sheets = self._collect_all(years) if self.all_sheets else self._collect_window(years)
        logger.info(
            "Grabbed the sheets from the folder: %s",
            ", ".join(f'{s.key}="{s.name}"' for s in sheets) or "none",
        )
        return sheets

    def _collect_all(self, years: list[DriveFile]) -> list[ManifestSheet]:
        found = [
            ManifestSheet(key=f"{year.name}-{sheet.name[:2]}", id=sheet.id, name=sheet.name)
            for year in years
            for sheet in self._spreadsheets(year)
        ]
        return sorted(found, key=lambda s: s.key)

    def _collect_window(self, years: list[DriveFile]) -> list[ManifestSheet]:
        targets = target_months(self.clock().date())
        selected: dict[str, ManifestSheet] = {}
        for year in years:
            wanted = [(key, day) for key, day in targets if f"{day:%Y}" == year.name]
            if not wanted:
                continue
            for sheet in self._spreadsheets(year):
                for key, day in wanted:
                    if sheet.name[:2] == f"{day:%m}":
                        selected.setdefault(key, ManifestSheet(key=key, id=sheet.id, name=sheet.name))
                        break

        claimed: set[str] = set()
        ordered: list[ManifestSheet] = []
        for key, _ in targets:
            sheet = selected.get(key)
            if sheet is None or sheet.id in claimed:
                continue
            claimed.add(sheet.id)
            ordered.append(sheet)
        return ordered

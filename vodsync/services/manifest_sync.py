"""Manifest synchronisation task: Drive folder of monthly sheets into the local store."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Protocol

from ..config import ManifestSyncSettings
from ..core.dedup import DedupPlanner, MonthlyLinkPolicy
from ..db import DatabaseManager
from ..errors import FailedUnit, MalformedInputError, PartialCycleError, TransientSourceError
from ..integrations import Worksheet
from ..manifest.collector import FolderLister, ManifestSheet, SheetCollector
from ..manifest.parser import ManifestParser
from ..models import CycleReport

logger = logging.getLogger(__name__)


class WorksheetReader(Protocol):
    def fetch_worksheets(self, sheet_id: str) -> list[Worksheet]: ...


class ManifestSyncTask:
    """One cycle walks the selected spreadsheets worksheet by worksheet."""

    name = "manifest"

    def __init__(
        self,
        settings: ManifestSyncSettings,
        store: DatabaseManager,
        drive: FolderLister,
        sheets: WorksheetReader,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.sheets = sheets
        self.sleep = sleep
        self.collector = SheetCollector(drive, settings.folder_id, all_sheets=settings.all_sheets, clock=clock)
        self.parser = ManifestParser(settings.main_platform, settings.secondary_platform, clock=clock)
        self.planner = DedupPlanner(store, MonthlyLinkPolicy(all_sheets=settings.all_sheets, clock=clock))

    @property
    def interval_seconds(self) -> float:
        return self.settings.interval_seconds

    @property
    def healthcheck_url(self) -> str | None:
        return self.settings.healthcheck_url

    def run_cycle(self) -> CycleReport:
        report = CycleReport(task=self.name)
        failures: list[FailedUnit] = []
        selected = self.collector.collect()

        for position, sheet in enumerate(selected):
            if position:
                self.sleep(self.settings.delay_seconds)
            logger.info(
                'Running sheet ID %s (name: "%s", number %d/%d)', sheet.id, sheet.name, position + 1, len(selected)
            )
            try:
                worksheets = self.sheets.fetch_worksheets(sheet.id)
            except TransientSourceError as exc:
                logger.warning("Couldn't fetch spreadsheet %s: %s", sheet.id, exc)
                failures.append(FailedUnit(exc.resource_kind, exc.resource_id, str(exc)))
                continue
            self._sync_spreadsheet(sheet, worksheets, report)

        if failures:
            raise PartialCycleError(self.name, failures)
        return report

    def _sync_spreadsheet(self, sheet: ManifestSheet, worksheets: list[Worksheet], report: CycleReport) -> None:
        for index, worksheet in enumerate(worksheets):
            if index:
                self.sleep(self.settings.delay_seconds)
            logger.info('Running worksheet number %d/%d (name: "%s")', index + 1, len(worksheets), worksheet.title)
            self._sync_worksheet(sheet, index, worksheet, report)

    def _sync_worksheet(self, sheet: ManifestSheet, index: int, worksheet: Worksheet, report: CycleReport) -> None:
        resource = f"{sheet.id}/{worksheet.title}"
        try:
            groups = self.parser.parse(worksheet, resource)
        except MalformedInputError as exc:
            logger.error("Skipping worksheet %s: %s", resource, exc)
            report.malformed += 1
            return
        if groups is None:
            logger.debug("Worksheet %s has no Date/Topic header, skipping", resource)
            report.skipped += 1
            return

        batch = self.planner.plan(sheet.id, sheet.key, index, worksheet.title, groups)
        report.unchanged += len(groups) - len(batch.fingerprints)
        if batch.is_empty:
            return
        inserted = self.store.apply_worksheet_batch(batch)
        report.written += len(batch.replacements)
        logger.info(
            "Worksheet %s: replaced %d groups (%d rows), %d deduped",
            resource,
            len(batch.replacements),
            inserted,
            len(batch.collapsed),
        )

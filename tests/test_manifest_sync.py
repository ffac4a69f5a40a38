from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from conftest import NOW, FakeDrive, FakeSheets, folder, manifest_row_count, manifest_rows, month_link, spreadsheet

from vodsync.config import ManifestSyncSettings
from vodsync.db import DatabaseManager
from vodsync.errors import PartialCycleError, TransientSourceError
from vodsync.integrations import Worksheet
from vodsync.manifest.collector import ONE_MONTH_AGO, PLUS_SIX_DAYS, TODAY, SheetCollector, previous_month
from vodsync.services.manifest_sync import ManifestSyncTask

HEADER = ["Date", "Start", "End", "Game", "Subject", "Topic", "YouTube VOD", "Twitch Link"]


def _settings(**overrides: object) -> ManifestSyncSettings:
    values: dict[str, object] = {
        "folder_id": "root",
        "interval_seconds": 3600.0,
        "all_sheets": False,
        "delay_seconds": 5.0,
        "main_platform": "youtube",
        "secondary_platform": "twitch",
    }
    values.update(overrides)
    return ManifestSyncSettings(**values)  # type: ignore[arg-type]


def _drive() -> FakeDrive:
    return FakeDrive(
        {
            "root": [folder("y2023", "2023"), folder("y2024", "2024"), spreadsheet("stray", "03 Loose")],
            "y2023": [spreadsheet("s-2023-12", "12 December")],
            "y2024": [
                spreadsheet("s-jan", "01 January"),
                spreadsheet("s-feb", "02 February"),
                spreadsheet("s-mar", "03 March"),
                folder("archive", "03 Archive"),
            ],
        }
    )


def _books() -> dict[str, list[Worksheet]]:
    return {
        "s-mar": [
            Worksheet("Notes", ["Todo", "Owner"], [["write intro", "me"]]),
            Worksheet(
                "Streams",
                HEADER,
                [
                    ["14/03/24", "00:00", "01:00:00", "Chess", "Opening", "Intro", "https://youtu.be/abc", "https://www.twitch.tv/videos/111"],
                    ["", "01:00:00", "02:00:00", "Chess", "Endgame", "Outro", "https://youtu.be/abc?t=3600", ""],
                ],
            ),
        ],
        "s-feb": [
            Worksheet("Streams", HEADER, [["29/02/24", "00:00", "00:45:00", "Talk", "News", "Recap", "https://youtu.be/feb", ""]]),
        ],
    }


def _task(db: DatabaseManager, sheets: FakeSheets, sleeps: list[float], **overrides: object) -> ManifestSyncTask:
    return ManifestSyncTask(_settings(**overrides), db, _drive(), sheets, clock=lambda: NOW, sleep=sleeps.append)


def test_default_window_selects_current_and_previous_month() -> None:
    sheets = SheetCollector(_drive(), "root", clock=lambda: NOW).collect()
    assert [(s.key, s.id) for s in sheets] == [(TODAY, "s-mar"), (ONE_MONTH_AGO, "s-feb")]


def test_window_crosses_year_boundary() -> None:
    clock = lambda: datetime(2024, 1, 28, tzinfo=timezone.utc)  # noqa: E731
    sheets = SheetCollector(_drive(), "root", clock=clock).collect()
    assert [(s.key, s.id) for s in sheets] == [(TODAY, "s-jan"), (ONE_MONTH_AGO, "s-2023-12"), (PLUS_SIX_DAYS, "s-feb")]


def test_previous_month_handles_short_months() -> None:
    assert previous_month(date(2024, 3, 31)) == date(2024, 2, 29)
    assert previous_month(date(2024, 1, 15)) == date(2023, 12, 31)


def test_all_sheets_mode_keys_by_year_and_month() -> None:
    sheets = SheetCollector(_drive(), "root", all_sheets=True).collect()
    assert [s.key for s in sheets] == ["2023-12", "2024-01", "2024-02", "2024-03"]


def test_cycle_writes_groups_and_links_current_month(db: DatabaseManager) -> None:
    sheets = FakeSheets(_books())
    sleeps: list[float] = []

    report = _task(db, sheets, sleeps).run_cycle()

    assert sheets.calls == ["s-mar", "s-feb"]
    assert sleeps == [5.0, 5.0]
    assert report.skipped == 1
    assert report.written == 3
    assert manifest_row_count(db) == 3
    assert month_link(db, "2024-03-01") == "s-mar"
    abc = sorted((row["start_time"], row["topic"], row["main_stamp"]) for row in manifest_rows(db, "main", "youtube", "abc"))
    assert abc == [("00:00", "Intro", 0), ("01:00:00", "Outro", 3600)]
    assert [row["main_id"] for row in manifest_rows(db, "secondary", "twitch", "111")] == ["abc"]


def test_second_cycle_with_unchanged_sheets_writes_nothing(db: DatabaseManager) -> None:
    task = _task(db, FakeSheets(_books()), [])
    task.run_cycle()

    report = task.run_cycle()

    assert report.written == 0
    assert report.unchanged == 3
    assert manifest_row_count(db) == 3


def test_malformed_worksheet_does_not_stop_the_cycle(db: DatabaseManager) -> None:
    books = _books()
    books["s-mar"][1].rows.append(["31/31/24", "", "", "", "", "Broken", "https://youtu.be/bad", ""])

    report = _task(db, FakeSheets(books), []).run_cycle()

    assert report.malformed == 1
    assert manifest_rows(db, "main", "youtube", "abc") == []
    assert len(manifest_rows(db, "main", "youtube", "feb")) == 1


class FlakySheets(FakeSheets):
    def fetch_worksheets(self, sheet_id: str) -> list[Worksheet]:
        if sheet_id == "s-mar":
            raise TransientSourceError("spreadsheet", sheet_id, "HTTP 503")
        return super().fetch_worksheets(sheet_id)


def test_unreachable_spreadsheet_fails_cycle_after_the_rest(db: DatabaseManager) -> None:
    with pytest.raises(PartialCycleError) as info:
        _task(db, FlakySheets(_books()), []).run_cycle()

    assert [f.resource_id for f in info.value.failures] == ["s-mar"]
    assert len(manifest_rows(db, "main", "youtube", "feb")) == 1


def test_all_sheets_cycle_links_every_month(db: DatabaseManager) -> None:
    books = _books()
    books["s-jan"] = []
    books["s-2023-12"] = []

    _task(db, FakeSheets(books), [], all_sheets=True).run_cycle()

    assert month_link(db, "2024-02-01") == "s-feb"
    assert month_link(db, "2024-03-01") == "s-mar"

"""Google Sheets reader returning worksheets as formatted cell text."""

from __future__ import annotations

import logging
from typing import Any

from googleapiclient.errors import HttpError

from ..errors import TransientSourceError
from . import Worksheet

logger = logging.getLogger(__name__)

_FIELDS = "spreadsheetId,properties.title,sheets(properties.title,data.rowData.values(formattedValue))"


def _row_values(row: dict[str, Any]) -> list[str]:
    return [cell.get("formattedValue", "") for cell in row.get("values", [])]


class SheetsClient:
    def __init__(self, service: Any) -> None:
        self._service = service

    def fetch_worksheets(self, sheet_id: str) -> list[Worksheet]:
        try:
            response = self._service.spreadsheets().get(spreadsheetId=sheet_id, fields=_FIELDS).execute()
        except HttpError as exc:
            raise TransientSourceError("spreadsheet", sheet_id, f"Sheets error: {exc}") from exc

        worksheets: list[Worksheet] = []
        for sheet in response.get("sheets", []):
            title = (sheet.get("properties") or {}).get("title", "")
            grid = (sheet.get("data") or [{}])[0]
            rows = [_row_values(row) for row in grid.get("rowData", [])]
            header, body = (rows[0], rows[1:]) if rows else ([], [])
            worksheets.append(Worksheet(title=title, header=header, rows=body))
        logger.debug("Fetched %d worksheets from spreadsheet %s", len(worksheets), sheet_id)
        return worksheets

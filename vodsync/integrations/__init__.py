"""Clients for the external sources vodsync reads from."""

from __future__ import annotations

from dataclasses import dataclass, field

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"


@dataclass(frozen=True, slots=True)
class DriveFile:
    """Entry of a Drive folder listing."""

    id: str
    name: str
    mime_type: str

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def is_spreadsheet(self) -> bool:
        return self.mime_type == SPREADSHEET_MIME_TYPE


@dataclass(slots=True)
class Worksheet:
    """One tab of a spreadsheet rendered as formatted cell text."""

    title: str
    header: list[str]
    rows: list[list[str]] = field(default_factory=list)


__all__ = ["DriveFile", "Worksheet", "FOLDER_MIME_TYPE", "SPREADSHEET_MIME_TYPE"]

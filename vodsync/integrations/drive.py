"""Google Drive folder listing."""

from __future__ import annotations

import logging
from typing import Any

from googleapiclient.errors import HttpError

from ..errors import TransientSourceError
from . import DriveFile

logger = logging.getLogger(__name__)


class DriveClient:
    def __init__(self, service: Any) -> None:
        self._service = service

    def list(self, folder_id: str) -> list[DriveFile]:
        """Every non-trashed child of a folder, following pagination."""
        files: list[DriveFile] = []
        page_token: str | None = None
        while True:
            try:
                response = (
                    self._service.files()
                    .list(
                        q=f'"{folder_id}" in parents and trashed = false',
                        fields="nextPageToken, files(id, name, mimeType)",
                        pageToken=page_token,
                        pageSize=1000,
                    )
                    .execute()
                )
            except HttpError as exc:
                raise TransientSourceError("folder", folder_id, f"Drive error: {exc}") from exc
            files.extend(
                DriveFile(id=item["id"], name=item.get("name", ""), mime_type=item.get("mimeType", ""))
                for item in response.get("files", [])
            )
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Listed %d files in folder %s", len(files), folder_id)
        return files

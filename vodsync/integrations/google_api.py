"""Google API service construction shared by the Drive, Sheets and YouTube clients."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from google.oauth2 import service_account
from googleapiclient.discovery import build

from ..config import AppConfig, ConfigError
from ..utils.secrets import youtube_api_key

logger = logging.getLogger(__name__)

SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/youtube.readonly",
)


def load_credentials(path: Path) -> service_account.Credentials:
    """Load service-account credentials from the JSON key file."""
    if not path.is_file():
        raise ConfigError(f"Google credentials file not found: {path}")
    return service_account.Credentials.from_service_account_file(str(path), scopes=list(SCOPES))


class GoogleServices:
    """Lazily builds and caches discovery clients for one process."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._credentials: service_account.Credentials | None = None
        self._services: dict[tuple[str, str], Any] = {}

    @property
    def credentials(self) -> service_account.Credentials:
        if self._credentials is None:
            self._credentials = load_credentials(self.config.google_credentials_path)
            logger.debug("Loaded Google service-account credentials from %s", self.config.google_credentials_path)
        return self._credentials

    def service(self, name: str, version: str) -> Any:
        key = (name, version)
        if key not in self._services:
            api_key = youtube_api_key(self.config) if name == "youtube" else None
            if api_key:
                self._services[key] = build(name, version, developerKey=api_key, cache_discovery=False)
            else:
                self._services[key] = build(name, version, credentials=self.credentials, cache_discovery=False)
            logger.debug("Created Google API client %s %s", name, version)
        return self._services[key]

"""Configuration loader for vodsync (Pydantic edition)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGER = logging.getLogger(__name__)

PlatformName = Literal["youtube", "twitch", "rumble", "kick", "odysee"]


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded safely."""


@dataclass(frozen=True, slots=True)
class ManifestSyncSettings:
    """Immutable inputs of the manifest synchronisation task."""

    folder_id: str
    interval_seconds: float
    all_sheets: bool
    delay_seconds: float
    main_platform: PlatformName
    secondary_platform: PlatformName | None
    healthcheck_url: str | None = None


@dataclass(frozen=True, slots=True)
class YouTubeSyncSettings:
    """Immutable inputs of the YouTube synchronisation task."""

    channel_id: str
    playlist_id: str
    interval_seconds: float
    fetch_everything: bool = False
    member_delay_seconds: float = 0.0
    probe_timeout_seconds: float = 30.0
    stale_after: timedelta = timedelta(hours=24)
    page_size: int = 45
    healthcheck_url: str | None = None


class AppConfig(BaseSettings):
    """Strongly typed runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        validate_default=True,
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="production",
        validation_alias=AliasChoices("APP_ENVIRONMENT", "APP_ENV"),
    )
    database_path: Path = Field(
        default=Path("db/vodsync.db"),
        validation_alias=AliasChoices("APP_DATABASE_PATH", "DB_FILE"),
    )
    log_path: Path = Field(
        default=Path("logs/vodsync.log"),
        validation_alias=AliasChoices("APP_LOG_PATH", "LOG_PATH"),
    )

    # Credentials
    google_credentials_path: Path = Field(
        default=Path("credentials.json"),
        validation_alias=AliasChoices("APP_GOOGLE_CREDENTIALS", "GOOGLE_CRED"),
    )
    youtube_api_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("YT_API_KEY", "YOUTUBE_API_KEY"))

    # Manifest (Drive folder of monthly spreadsheets)
    manifest_enabled: bool = Field(True, validation_alias="APP_MANIFEST_ENABLED")
    manifest_folder_id: str | None = Field(default=None, validation_alias=AliasChoices("LWOD_FOLDER", "APP_MANIFEST_FOLDER"))
    manifest_delay_seconds: float = Field(5.0, ge=0, validation_alias=AliasChoices("LWOD_DELAY", "DELAY"))
    manifest_refresh_minutes: int = Field(60, ge=1, validation_alias=AliasChoices("LWOD_REFRESH", "REFRESH"))
    manifest_healthcheck_url: str | None = Field(default=None, validation_alias=AliasChoices("LWOD_HEALTHCHECK", "HEALTHCHECK"))
    manifest_main_platform: PlatformName = Field("youtube", validation_alias="APP_MANIFEST_MAIN_PLATFORM")
    manifest_secondary_platform: PlatformName | None = Field("twitch", validation_alias="APP_MANIFEST_SECONDARY_PLATFORM")

    # YouTube
    youtube_enabled: bool = Field(True, validation_alias="APP_YOUTUBE_ENABLED")
    youtube_channel_id: str | None = Field(default=None, validation_alias=AliasChoices("YT_CHANNEL", "APP_YOUTUBE_CHANNEL"))
    youtube_playlist_id: str | None = Field(default=None, validation_alias=AliasChoices("YT_PLAYLIST", "APP_YOUTUBE_PLAYLIST"))
    youtube_refresh_minutes: int = Field(5, ge=1, validation_alias="YT_REFRESH")
    youtube_delay_seconds: float = Field(0.0, ge=0, validation_alias="YT_DELAY")
    youtube_healthcheck_url: str | None = Field(default=None, validation_alias="YT_HEALTHCHECK")
    youtube_probe_timeout_seconds: float = Field(30.0, gt=0, validation_alias="APP_YOUTUBE_PROBE_TIMEOUT")
    youtube_stale_after_hours: int = Field(24, ge=1, validation_alias="APP_YOUTUBE_STALE_AFTER_HOURS")
    youtube_playlist_page_size: int = Field(45, ge=1, le=50, validation_alias="APP_YOUTUBE_PAGE_SIZE")

    # Supervisor
    backoff_unit_seconds: float = Field(1.0, gt=0, validation_alias="APP_BACKOFF_UNIT_SECONDS")
    backoff_max_units: int = Field(32, ge=1, validation_alias="APP_BACKOFF_MAX_UNITS")

    # Run flags (usually set from the command line)
    verbose: bool = Field(False, validation_alias="APP_VERBOSE")
    all_sheets: bool = Field(False, validation_alias="APP_ALL_SHEETS")
    all_videos: bool = Field(False, validation_alias="APP_ALL_VIDEOS")
    continuous: bool = Field(True, validation_alias="APP_CONTINUOUS")

    @field_validator("database_path", "log_path", "google_credentials_path", mode="after")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        expanded = value.expanduser()
        return expanded if expanded.is_absolute() else (Path.cwd() / expanded).resolve()

    @field_validator(
        "manifest_folder_id",
        "manifest_healthcheck_url",
        "youtube_channel_id",
        "youtube_playlist_id",
        "youtube_healthcheck_url",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("manifest_secondary_platform", mode="before")
    @classmethod
    def _optional_platform(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("", "none"):
            return None
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _validate_modes(self) -> "AppConfig":
        if self.all_sheets and self.continuous:
            raise ConfigError(
                "Can't continuously process every single sheet; disable either all_sheets or continuous mode"
            )
        if self.manifest_secondary_platform == self.manifest_main_platform:
            raise ConfigError("manifest_secondary_platform must differ from manifest_main_platform")
        return self

    def with_overrides(self, **updates: Any) -> "AppConfig":
        """Return a re-validated copy with command-line overrides applied."""
        data = self.model_dump()
        data.update({key: value for key, value in updates.items() if value is not None})
        try:
            return type(self).model_validate(data)
        except ValidationError as exc:
            raise ConfigError("Invalid configuration override") from exc

    def ensure_runtime_directories(self) -> None:
        """Create directories required for runtime operation."""
        _ensure_directories((self.database_path.parent, self.log_path.parent))

    @property
    def manifest_configured(self) -> bool:
        return self.manifest_enabled and bool(self.manifest_folder_id)

    @property
    def youtube_configured(self) -> bool:
        return self.youtube_enabled and bool(self.youtube_channel_id and self.youtube_playlist_id)

    def manifest_settings(self) -> ManifestSyncSettings:
        if not self.manifest_folder_id:
            raise ConfigError("LWOD_FOLDER must be set to synchronise the manifest")
        return ManifestSyncSettings(
            folder_id=self.manifest_folder_id,
            interval_seconds=self.manifest_refresh_minutes * 60.0,
            all_sheets=self.all_sheets,
            delay_seconds=self.manifest_delay_seconds,
            main_platform=self.manifest_main_platform,
            secondary_platform=self.manifest_secondary_platform,
            healthcheck_url=self.manifest_healthcheck_url if self.continuous else None,
        )

    def youtube_settings(self) -> YouTubeSyncSettings:
        if not (self.youtube_channel_id and self.youtube_playlist_id):
            raise ConfigError("YT_CHANNEL and YT_PLAYLIST must be set to synchronise YouTube")
        return YouTubeSyncSettings(
            channel_id=self.youtube_channel_id,
            playlist_id=self.youtube_playlist_id,
            interval_seconds=self.youtube_refresh_minutes * 60.0,
            fetch_everything=self.all_videos,
            member_delay_seconds=self.youtube_delay_seconds,
            probe_timeout_seconds=self.youtube_probe_timeout_seconds,
            stale_after=timedelta(hours=self.youtube_stale_after_hours),
            page_size=self.youtube_playlist_page_size,
            healthcheck_url=self.youtube_healthcheck_url if self.continuous else None,
        )


def _ensure_directories(paths: Iterable[Path]) -> None:
    for directory in paths:
        directory.mkdir(parents=True, exist_ok=True)


def load_config(env_path: Path | None = None) -> AppConfig:
    """Load configuration from .env/environment with validation."""
    load_kwargs: dict[str, str] = {}
    if env_path is not None:
        load_dotenv(env_path, override=False)
        load_kwargs["_env_file"] = str(env_path)
    else:
        load_dotenv(override=False)
    try:
        config = AppConfig(**load_kwargs)
    except ValidationError as exc:  # pragma: no cover - exercised in integration tests
        raise ConfigError("Invalid configuration") from exc

    config.ensure_runtime_directories()

    LOGGER.info(
        "AppConfig loaded",
        extra={
            "event": "config.loaded",
            "environment": config.environment,
            "paths": {
                "database": str(config.database_path),
                "log": str(config.log_path),
            },
        },
    )
    return config

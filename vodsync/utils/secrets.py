"""Plaintext access to the secrets held in :class:`AppConfig`."""

from __future__ import annotations

from pydantic import SecretStr

from ..config import AppConfig


def secret_value(value: SecretStr | str | None) -> str | None:
    """Return the secret without surrounding whitespace; blank counts as unset."""
    if value is None:
        return None
    raw = value.get_secret_value() if isinstance(value, SecretStr) else value
    return raw.strip() or None


def youtube_api_key(config: AppConfig) -> str | None:
    """The Data API key, when one is configured in place of service-account access."""
    return secret_value(config.youtube_api_key)

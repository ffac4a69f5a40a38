"""Outward health-check ping fired after a successful task cycle."""

from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)

HEALTHCHECK_TIMEOUT_SECONDS = 10


def ping(url: str | None, *, session: requests.Session | None = None) -> bool:
    """Send a HEAD request to ``url``; failures are logged and reported as ``False``."""
    if not url:
        return False
    try:
        if session is not None:
            response = session.head(url, timeout=HEALTHCHECK_TIMEOUT_SECONDS)
        else:
            response = requests.head(url, timeout=HEALTHCHECK_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        logger.error("Health check to %s failed: %s", url, exc)
        return False
    if response.status_code >= 400:
        logger.warning("Health check to %s answered %s", url, response.status_code)
        return False
    logger.debug("Health check to %s answered %s", url, response.status_code)
    return True

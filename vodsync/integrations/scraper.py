"""Best-effort scrape of a channel's live page for the current stream id."""

from __future__ import annotations

import logging
import re

import requests
from bs4 import BeautifulSoup

from ..errors import TransientSourceError

logger = logging.getLogger(__name__)

LIVE_PAGE_URL = "https://youtube.com/channel/{channel_id}/live?hl=en"
LIVE_MARKER = "Started streaming "
WATCH_ID_RE = re.compile(r"/watch\?v=([^\"&]+)")


def extract_live_id(html: str) -> str | None:
    """Return the canonical video id when the page shows an active stream."""
    if LIVE_MARKER not in html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    link = soup.find("link", rel="canonical", href=True)
    if link is None:
        return None
    match = WATCH_ID_RE.search(link["href"])
    return match.group(1) if match else None


class LivePageScraper:
    """Fetches the live page without cookies so no consent screen is served."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 15.0) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def scrape_live_id(self, channel_id: str) -> str | None:
        url = LIVE_PAGE_URL.format(channel_id=channel_id)
        self._session.cookies.clear()
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransientSourceError("live_page", channel_id, f"scrape failed: {exc}") from exc
        return extract_live_id(response.text)

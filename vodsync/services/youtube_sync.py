"""YouTube synchronisation task wrapping the discovery merger."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from ..config import YouTubeSyncSettings
from ..core.discovery import LIVE_SEARCH_FEED, PLAYLIST_FEED, DiscoverySourceMerger, LiveScraper, VideoPlatform
from ..db import DatabaseManager
from ..models import CycleReport

logger = logging.getLogger(__name__)

TOKEN_HISTORY = 50


class YouTubeSyncTask:
    name = "youtube"

    def __init__(
        self,
        settings: YouTubeSyncSettings,
        store: DatabaseManager,
        platform: VideoPlatform,
        scraper: LiveScraper,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.merger = DiscoverySourceMerger(settings, store, platform, scraper, clock=clock, sleep=sleep)

    @property
    def interval_seconds(self) -> float:
        return self.settings.interval_seconds

    @property
    def healthcheck_url(self) -> str | None:
        return self.settings.healthcheck_url

    def run_cycle(self) -> CycleReport:
        report = self.merger.run_cycle(self.name)
        pruned = sum(self.store.prune_tokens(feed, keep=TOKEN_HISTORY) for feed in (LIVE_SEARCH_FEED, PLAYLIST_FEED))
        if pruned:
            logger.debug("Pruned %d old feed tokens", pruned)
        return report

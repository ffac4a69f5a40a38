"""VOD link extraction as a strategy table over the supported platforms."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import SplitResult, parse_qs, urlsplit

from ..errors import MalformedInputError

logger = logging.getLogger(__name__)

NUMBER_RE = re.compile(r"\d+")
YOUTUBE_TIME_RE = re.compile(r"(?P<hours>\d+)h(?P<minutes>\d+)m(?P<seconds>\d+)s|(?P<onlysec>^\d+$)")
YOUTUBE_HOSTS = frozenset({"youtube.com", "www.youtube.com", "m.youtube.com"})


@dataclass(frozen=True, slots=True)
class VodLink:
    platform: str
    id: str
    stamp: int = 0


def _query(url: SplitResult, name: str) -> str:
    values = parse_qs(url.query).get(name)
    return values[0] if values else ""


def _path_segment(url: SplitResult, index: int) -> str:
    parts = url.path.split("/")
    return parts[index] if len(parts) > index else ""


def _number_stamp(raw: str, url: SplitResult) -> int:
    if not raw:
        return 0
    match = NUMBER_RE.search(raw)
    if match is None:
        raise MalformedInputError("link", url.geturl(), f"unparsable timestamp {raw!r}")
    return int(match.group(0))


def youtube_stamp(raw: str) -> int:
    """Seconds from a ``t`` parameter written as ``1h2m3s`` or plain seconds."""
    match = YOUTUBE_TIME_RE.search(raw)
    if match is None:
        return 0
    if match.group("onlysec"):
        return int(match.group("onlysec"))
    return int(match.group("hours")) * 3600 + int(match.group("minutes")) * 60 + int(match.group("seconds"))


def _youtube(url: SplitResult) -> tuple[str, int]:
    host = (url.hostname or "").lower()
    if host == "youtu.be":
        video_id = url.path[1:]
    elif host in YOUTUBE_HOSTS:
        video_id = _query(url, "v")
    else:
        video_id = ""
    return video_id, youtube_stamp(_query(url, "t"))


def _twitch(url: SplitResult) -> tuple[str, int]:
    match = NUMBER_RE.search(url.path)
    return (match.group(0) if match else ""), 0


def _rumble(url: SplitResult) -> tuple[str, int]:
    return _path_segment(url, 2), _number_stamp(_query(url, "t"), url)


def _kick(url: SplitResult) -> tuple[str, int]:
    return _path_segment(url, 2), 0


def _odysee(url: SplitResult) -> tuple[str, int]:
    return url.path, _number_stamp(_query(url, "t"), url)


@dataclass(frozen=True, slots=True)
class LinkStrategy:
    platform: str
    markers: tuple[str, ...]
    extract: Callable[[SplitResult], tuple[str, int]]

    def matches(self, text: str) -> bool:
        return any(marker in text for marker in self.markers)


STRATEGIES: tuple[LinkStrategy, ...] = (
    LinkStrategy("youtube", ("youtu.be", "youtube.com"), _youtube),
    LinkStrategy("twitch", ("twitch.tv/videos",), _twitch),
    LinkStrategy("rumble", ("rumble.com/embed",), _rumble),
    LinkStrategy("kick", ("kick.com/video",), _kick),
    LinkStrategy("odysee", ("odysee.com",), _odysee),
)


def _split(text: str) -> SplitResult:
    candidate = text if "://" in text else f"https://{text}"
    try:
        return urlsplit(candidate)
    except ValueError as exc:
        raise MalformedInputError("link", text, f"URL parse error: {exc}") from exc


def extract_link(cell: str) -> VodLink | None:
    """Return the platform VOD referenced by a cell, if any.

    Raises :class:`MalformedInputError` when a recognised link cannot be parsed.
    """
    text = cell.strip()
    if not text:
        return None
    for strategy in STRATEGIES:
        if not strategy.matches(text):
            continue
        video_id, stamp = strategy.extract(_split(text))
        if video_id:
            return VodLink(platform=strategy.platform, id=video_id, stamp=stamp)
        logger.debug("No %s URL in cell: %s", strategy.platform, text)
    return None

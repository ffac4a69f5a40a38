"""ETag-style conditional fetching with not-modified short-circuiting."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Generic, Protocol, TypeVar, Union

from ..errors import SyncError, TransientSourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class NotModified:
    """The server confirmed the sent token is still current; no payload follows."""

    token: str | None = None


@dataclass(frozen=True, slots=True)
class Fetched(Generic[T]):
    payload: T
    token: str


FetchResult = Union[Fetched[T], NotModified]


@dataclass(frozen=True, slots=True)
class FetchOutcome(Generic[T]):
    """Result of a conditional fetch: a payload, or nothing new with a token to keep."""

    payload: T | None
    token: str
    not_modified: bool = False


class TokenStore(Protocol):
    def latest_token(self, feed: str) -> str: ...

    def record_token(self, feed: str, token: str) -> None: ...


def fetch_conditional(
    kind: str,
    resource_id: str | None,
    call: Callable[[str], FetchResult[T]],
    token: str,
) -> FetchOutcome[T]:
    """Invoke ``call`` with the last seen token and normalise the answer.

    A not-modified answer is a successful outcome without payload. Errors other
    than the vodsync taxonomy are reported as :class:`TransientSourceError`
    tagged with the resource kind and id.
    """
    try:
        result = call(token)
    except SyncError:
        raise
    except Exception as exc:
        raise TransientSourceError(kind, resource_id, f"fetch failed: {exc}") from exc

    if isinstance(result, NotModified):
        logger.debug("Got a 304 Not Modified for %s %s", kind, resource_id)
        return FetchOutcome(payload=None, token=result.token or token, not_modified=True)
    return FetchOutcome(payload=result.payload, token=result.token)


def fetch_feed(
    store: TokenStore,
    feed: str,
    call: Callable[[str], FetchResult[T]],
    *,
    kind: str = "feed",
    record: Callable[[str, str], object] | None = None,
) -> FetchOutcome[T]:
    """Fetch a feed conditionally and record the resulting token, changed or not.

    ``record`` defaults to the store; callers that must apply the payload first
    pass :meth:`CycleTokens.stage` instead.
    """
    token = store.latest_token(feed)
    outcome = fetch_conditional(kind, feed, call, token)
    (record or store.record_token)(feed, outcome.token)
    return outcome


class CycleTokens:
    """Feed tokens held back until the items they cover have been applied.

    A cycle that fails keeps the previous tokens, so its retry refetches the
    same payloads instead of being told nothing changed.
    """

    def __init__(self, store: TokenStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._staged: dict[str, str] = {}
        self._sealed = False

    def stage(self, feed: str, token: str) -> bool:
        with self._lock:
            if self._sealed:
                return False
            self._staged[feed] = token
            return True

    def seal(self) -> None:
        """Refuse further staging; late probes must not advance a token."""
        with self._lock:
            self._sealed = True

    def commit(self) -> int:
        self.seal()
        for feed, token in self._staged.items():
            self._store.record_token(feed, token)
        return len(self._staged)

    def discard(self) -> list[str]:
        self.seal()
        feeds = sorted(self._staged)
        self._staged.clear()
        return feeds

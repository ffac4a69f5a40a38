"""Content fingerprints used as the equality oracle gating every write."""

from __future__ import annotations

import hashlib
from typing import Iterable

_FIELD_SEPARATOR = "\x1f"
_ROW_SEPARATOR = "\x1e"
_DIGEST_BYTES = 8


def _render(value: object) -> str:
    return "" if value is None else str(value)


def _join(fields: Iterable[object]) -> str:
    return _FIELD_SEPARATOR.join(_render(value) for value in fields)


def _digest(payload: str) -> str:
    raw = hashlib.blake2b(payload.encode("utf-8"), digest_size=_DIGEST_BYTES).digest()
    return str(int.from_bytes(raw, "big"))


def fingerprint(*fields: object) -> str:
    """Return a 64-bit digest of the ordered fields as an unsigned decimal string."""
    return _digest(_join(fields))


def group_fingerprint(rows: Iterable[Iterable[object]]) -> str:
    """Fingerprint the in-order concatenation of several rows' fields."""
    return _digest(_ROW_SEPARATOR.join(_join(row) for row in rows))

"""Plan the storage batch for one manifest worksheet."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol, Sequence

from ..models import ManifestGroup, WorksheetBatch
from .fingerprint import group_fingerprint

logger = logging.getLogger(__name__)

TODAY_SHEET_KEY = "Today"
LINKED_WORKSHEET_INDEX = 1


class FingerprintStore(Protocol):
    def manifest_fingerprints(self, keys: Iterable[tuple[str, str]]) -> dict[tuple[str, str], str]: ...


class LinkPolicy(Protocol):
    def link_key(self, sheet_key: str, worksheet_index: int) -> str | None: ...


@dataclass(frozen=True, slots=True)
class MonthlyLinkPolicy:
    """Which worksheet records the ``YYYY-MM-01`` link to its spreadsheet.

    The second worksheet of the current month's spreadsheet links the current
    month. With every spreadsheet selected, each one links its own month.
    """

    all_sheets: bool = False
    clock: Callable[[], datetime] | None = None

    def link_key(self, sheet_key: str, worksheet_index: int) -> str | None:
        if sheet_key == TODAY_SHEET_KEY and worksheet_index == LINKED_WORKSHEET_INDEX:
            now = self.clock() if self.clock else datetime.now(timezone.utc)
            return f"{now:%Y-%m}-01"
        if self.all_sheets:
            return f"{sheet_key}-01"
        return None


class DedupPlanner:
    def __init__(self, store: FingerprintStore, link_policy: LinkPolicy | None = None) -> None:
        self.store = store
        self.link_policy = link_policy

    def plan(
        self,
        sheet_id: str,
        sheet_key: str,
        worksheet_index: int,
        worksheet_title: str,
        groups: Sequence[ManifestGroup],
    ) -> WorksheetBatch:
        """Compare every group with its stored fingerprint and collect the writes.

        Changed groups always record their new fingerprint. Among changed groups
        sharing a fingerprint only the first one encountered has its rows
        replaced; the others are listed in ``collapsed`` against it.
        """
        stored = self.store.manifest_fingerprints(group.key for group in groups)
        batch = WorksheetBatch(sheet_id=sheet_id, worksheet_title=worksheet_title)
        writers: dict[str, tuple[str, str]] = {}

        for group in groups:
            new = group_fingerprint(row.hash_fields() for row in group.rows)
            old = stored.get(group.key)
            if old == new:
                continue
            if old is None:
                logger.debug("Couldn't find a row with %s ID %s, adding it", group.platform, group.id)
            else:
                logger.debug(
                    "For %s ID %s, the old hash (%s) doesn't equal the new hash (%s), proceeding",
                    group.platform,
                    group.id,
                    old,
                    new,
                )
            batch.fingerprints[group.key] = new
            writer = writers.get(new)
            # a collapsed group skips its delete; rows stored under a main id that
            # vanished from the sheet stay until that id is edited again
            if writer is not None:
                batch.collapsed[group.key] = writer
                continue
            writers[new] = group.key
            batch.replacements.append(group)

        if not batch.is_empty and self.link_policy is not None:
            batch.link_key = self.link_policy.link_key(sheet_key, worksheet_index)
        logger.debug(
            "Planned worksheet %s: %d changed, %d deduped, %d unchanged",
            worksheet_title,
            len(batch.fingerprints),
            len(batch.collapsed),
            len(groups) - len(batch.fingerprints),
        )
        return batch

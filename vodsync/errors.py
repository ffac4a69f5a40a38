"""Error taxonomy shared by the synchronisation tasks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


class SyncError(RuntimeError):
    """Base error carrying the resource kind and id needed to redo the work."""

    def __init__(self, resource_kind: str, resource_id: str | None, message: str) -> None:
        self.resource_kind = resource_kind
        self.resource_id = resource_id
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.resource_id:
            return f"[{self.resource_kind} {self.resource_id}] {self.message}"
        return f"[{self.resource_kind}] {self.message}"


class TransientSourceError(SyncError):
    """A source could not be reached or answered with an unexpected status."""


class MalformedInputError(SyncError):
    """A single manifest worksheet or entity payload could not be interpreted."""


class StorageError(SyncError):
    """A database read or write failed; the current transaction was rolled back."""


@dataclass(frozen=True, slots=True)
class FailedUnit:
    resource_kind: str
    resource_id: str | None
    error: str


class PartialCycleError(SyncError):
    """Raised after a cycle finished its other units but some failed transiently."""

    def __init__(self, task: str, failures: Sequence[FailedUnit]) -> None:
        self.failures = tuple(failures)
        summary = ", ".join(f"{f.resource_kind}:{f.resource_id}" for f in self.failures)
        super().__init__("task", task, f"{len(self.failures)} unit(s) failed: {summary}")

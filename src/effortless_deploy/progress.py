"""Live per-handler progress reporting."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .models import HandlerKind, HandlerResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEntry:
    name: str
    kind: HandlerKind
    status: str
    duration: float
    position: int


class DeployProgress:
    """
    Append-only progress log keyed by handler name.

    Each handler owns exactly one key, so concurrent handler tasks never
    write the same entry.

    Args:
        total: Number of handlers in the batch
        emit: Receives each formatted line (default: INFO log)
    """

    def __init__(self, total: int, emit: Callable[[str], None] | None = None) -> None:
        self.total = total
        self.entries: dict[str, ProgressEntry] = {}
        self._emit = emit or logger.info

    def _append(self, name: str, kind: HandlerKind, status: str, duration: float) -> ProgressEntry:
        if name in self.entries:
            raise ValueError(f"Progress for handler '{name}' already recorded")
        entry = ProgressEntry(name, kind, status, duration, len(self.entries) + 1)
        self.entries[name] = entry
        self._emit(self.format(entry))
        return entry

    def format(self, entry: ProgressEntry) -> str:
        return (
            f"[{entry.position}/{self.total}] {entry.name} ({entry.kind.value}) "
            f"{entry.status} {entry.duration:.1f}s"
        )

    def record(self, result: HandlerResult) -> ProgressEntry:
        return self._append(result.name, result.kind, result.status.value, result.duration)

    def fail(self, name: str, kind: HandlerKind, duration: float) -> ProgressEntry:
        return self._append(name, kind, "failed", duration)

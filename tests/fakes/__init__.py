"""Shared test doubles: re-exported memory backends and an interleaving store."""

from __future__ import annotations

from typing import Callable, Optional

from stepflow.models.changes import WorkflowChange
from stepflow.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryEntityStore,
    MemoryFileStore,
)


class InterleavingStore(MemoryEntityStore):
    """Memory store that runs ``before_next_change`` once, just before the next commit.

    Lets a test slip another operation in between an orchestrator call's reads
    and its write, deterministically.
    """

    def __init__(self) -> None:
        super().__init__()
        self.before_next_change: Optional[Callable[[], None]] = None

    def apply_change(self, change: WorkflowChange) -> None:
        hook, self.before_next_change = self.before_next_change, None
        if hook is not None:
            hook()
        super().apply_change(change)


__all__ = ["InterleavingStore", "MemoryCacheBackend", "MemoryEntityStore", "MemoryFileStore"]

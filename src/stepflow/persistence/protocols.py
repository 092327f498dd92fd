"""Re-export persistence protocols from core for convenience."""

from __future__ import annotations

from stepflow.core.protocols import ICacheBackend, IEntityStore, IFileStore

__all__ = ["ICacheBackend", "IEntityStore", "IFileStore"]

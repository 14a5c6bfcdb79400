"""
ports/reference_store_port.py
──────────────────────────────────────────────────────────────────────────────
Abstract interface for the durable reference-dictionary storage engine.

The port persists ReferenceEntry objects and scans them by module.  Cache
invalidation, learning and import live one layer up in
services/reference_store.py.

Current implementations:
  PostgresReferenceStore  (psycopg2)
  InMemoryReferenceStore  (process-local dict)
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from statcoder.domain.models import ModuleType, ReferenceEntry


@runtime_checkable
class ReferenceStorePort(Protocol):
    """Contract for the reference-entry storage backend."""

    def upsert(self, entries: list[ReferenceEntry]) -> None:
        """Insert or replace entries by id, all-or-nothing.

        Raises:
            StorageError: If any entry could not be written; none are kept.
        """
        ...

    def fetch_module(self, module: ModuleType) -> list[ReferenceEntry]:
        """Return every entry for one module (full scan).

        Raises:
            StorageError: On connection or query failure.
        """
        ...

    def delete(self, entry_id: str) -> ModuleType | None:
        """Delete one entry.

        Returns:
            The module the entry belonged to, or None if the id was unknown.

        Raises:
            StorageError: On connection or query failure.
        """
        ...

    def clear(self, module: ModuleType | None = None) -> None:
        """Delete every entry for ``module``, or every entry if None.

        Raises:
            StorageError: On connection or query failure.
        """
        ...

    def count_by_module(self) -> dict[ModuleType, int]:
        """Return entry counts keyed by module (absent modules may be omitted).

        Raises:
            StorageError: On connection or query failure.
        """
        ...

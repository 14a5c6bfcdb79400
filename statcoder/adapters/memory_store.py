"""
adapters/memory_store.py
──────────────────────────────────────────────────────────────────────────────
Implements ReferenceStorePort with a process-local dict.

Useful for demos, one-off CLI runs (REFERENCE_STORE=memory) and tests.
Nothing survives the process.  Writes are staged on a copy and swapped in,
so a failing upsert leaves the store untouched.
"""
from __future__ import annotations

import logging
import threading

from statcoder.domain.models import ModuleType, ReferenceEntry

logger = logging.getLogger(__name__)


class InMemoryReferenceStore:
    """Dict-backed ReferenceStorePort."""

    def __init__(self, entries: list[ReferenceEntry] | None = None) -> None:
        self._entries: dict[str, ReferenceEntry] = {}
        self._lock = threading.Lock()
        if entries:
            self.upsert(entries)

    def upsert(self, entries: list[ReferenceEntry]) -> None:
        with self._lock:
            staged = dict(self._entries)
            for entry in entries:
                staged[entry.id] = entry
            self._entries = staged

    def fetch_module(self, module: ModuleType) -> list[ReferenceEntry]:
        with self._lock:
            return [e for e in self._entries.values() if e.module == module]

    def delete(self, entry_id: str) -> ModuleType | None:
        with self._lock:
            entry = self._entries.pop(entry_id, None)
        return entry.module if entry else None

    def clear(self, module: ModuleType | None = None) -> None:
        with self._lock:
            if module is None:
                self._entries = {}
            else:
                self._entries = {
                    k: e for k, e in self._entries.items() if e.module != module
                }

    def count_by_module(self) -> dict[ModuleType, int]:
        counts: dict[ModuleType, int] = {}
        with self._lock:
            for entry in self._entries.values():
                counts[entry.module] = counts.get(entry.module, 0) + 1
        return counts

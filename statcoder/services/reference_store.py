"""
services/reference_store.py
──────────────────────────────────────────────────────────────────────────────
The local reference dictionary: durable term → code entries per module.

Responsibilities:
  1. CRUD over ReferenceEntry through any ReferenceStorePort backend.
  2. Publish a mutation event for every module a write touches, so derived
     caches (the FuzzyIndex) drop stale data before the next query.
  3. Dictionary import from flat records and "learn from a High-confidence
     result".

Storage failures surface as StorageError.  Deciding that a failure means
"no match" is the caller's job (see services/fuzzy_index.py).
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from statcoder.domain.exceptions import StorageError, ValidationError
from statcoder.domain.models import (
    CodingStatus,
    Confidence,
    EntrySource,
    ModuleType,
    ProcessedRow,
    ReferenceEntry,
)
from statcoder.ports.reference_store_port import ReferenceStorePort

logger = logging.getLogger(__name__)

# Called with the touched module, or None for "every module"
InvalidationListener = Callable[[Optional[ModuleType]], None]


class ReferenceStore:
    """Reference dictionary service.

    Args:
        backend: Any object satisfying ReferenceStorePort.
    """

    def __init__(self, backend: ReferenceStorePort) -> None:
        self._backend = backend
        self._listeners: list[InvalidationListener] = []

    # ── Mutation events ────────────────────────────────────────────────────

    def subscribe(self, listener: InvalidationListener) -> None:
        """Register a callback fired after every successful write."""
        self._listeners.append(listener)

    def _notify(self, module: ModuleType | None) -> None:
        for listener in self._listeners:
            listener(module)

    # ── CRUD ───────────────────────────────────────────────────────────────

    def put(self, entries: list[ReferenceEntry]) -> None:
        """Upsert entries by id as one all-or-nothing write.

        Raises:
            StorageError: If the backend rejected the write.
        """
        if not entries:
            return
        self._call("put", self._backend.upsert, entries)
        touched = {e.module for e in entries}
        for module in sorted(touched, key=lambda m: m.value):
            self._notify(module)
        logger.info(
            "Reference entries stored | count=%d modules=%s",
            len(entries),
            ",".join(sorted(m.value for m in touched)),
        )

    def get_by_module(self, module: ModuleType) -> list[ReferenceEntry]:
        """Full scan of one module, used only to (re)build a fuzzy index."""
        return self._call("get_by_module", self._backend.fetch_module, module)

    def delete(self, entry_id: str) -> bool:
        """Delete one entry; returns False when the id was unknown."""
        module = self._call("delete", self._backend.delete, entry_id)
        if module is None:
            return False
        self._notify(module)
        logger.info("Reference entry deleted | id=%s module=%s", entry_id, module.value)
        return True

    def clear(self, module: ModuleType | None = None) -> None:
        """Delete every entry of ``module``, or the whole dictionary."""
        self._call("clear", self._backend.clear, module)
        self._notify(module)
        logger.info("Reference data cleared | module=%s", module.value if module else "ALL")

    def stats(self) -> dict[ModuleType, int]:
        """Entry count for every module (zero when empty)."""
        counts = self._call("stats", self._backend.count_by_module)
        return {m: counts.get(m, 0) for m in ModuleType}

    # ── Dictionary building ────────────────────────────────────────────────

    def learn(self, row: ProcessedRow, module: ModuleType) -> ReferenceEntry:
        """Store a High-confidence coded row as a ``learned`` entry.

        Raises:
            ValidationError: If the row is not coded with High confidence,
                             has no primary text, or the module is DUAL.
        """
        if module == ModuleType.DUAL:
            raise ValidationError(
                "Dual-coded results cannot be learned; learn ISCO and ISIC separately"
            )
        result = row.result
        if (
            row.coding_status != CodingStatus.CODED
            or result is None
            or result.confidence != Confidence.HIGH
        ):
            raise ValidationError(
                f"Row {row.id} is not coded with High confidence; refusing to learn it"
            )
        if not row.primary_text.strip():
            raise ValidationError(f"Row {row.id} has no primary text to learn")

        entry = ReferenceEntry(
            module=module,
            term=row.primary_text.strip(),
            code=result.code,
            label=result.label,
            description=result.reasoning,
            source=EntrySource.LEARNED,
        )
        self.put([entry])
        return entry

    def import_records(
        self,
        records: Iterable[dict[str, Any]],
        module: ModuleType,
    ) -> list[ReferenceEntry]:
        """Build and store ``upload`` entries from flat dictionary records.

        Columns are positional: 1st = code, 2nd = label, 3rd = term (falls
        back to the label when missing or blank).  Rows without a code, or
        without any usable term, are skipped.

        Returns:
            The entries that were stored.
        """
        if module == ModuleType.DUAL:
            raise ValidationError(
                "Dual coding reads the ISCO-08 and ISIC Rev. 4 dictionaries; "
                "import into those modules instead"
            )
        entries: list[ReferenceEntry] = []
        skipped = 0
        for record in records:
            values = ["" if v is None else str(v).strip() for v in record.values()]
            code = values[0] if len(values) > 0 else ""
            label = values[1] if len(values) > 1 else ""
            term = (values[2] if len(values) > 2 else "") or label
            if not code or not term:
                skipped += 1
                continue
            entries.append(
                ReferenceEntry(
                    module=module,
                    term=term,
                    code=code,
                    label=label,
                    source=EntrySource.UPLOAD,
                )
            )
        if skipped:
            logger.warning(
                "Dictionary import skipped %d row(s) without code or term", skipped
            )
        self.put(entries)
        return entries

    # ── Helpers ────────────────────────────────────────────────────────────

    def _call(self, op: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Invoke a backend method, normalising every failure to StorageError."""
        try:
            return fn(*args)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Reference store {op} failed: {exc}") from exc

"""
services/orchestrator.py
──────────────────────────────────────────────────────────────────────────────
Batch Orchestrator: drives the ResolutionStrategy over an ordered row set.

State machine
  idle → mapping → processing ⇄ paused → review
  A background asyncio task exists only while ``processing``.  Pausing ends
  that task once the current wave settles; the queue of unprocessed ids is
  kept on the orchestrator, and resume() launches a fresh task over it.
  While paused, ``status`` is PAUSED but ``is_active`` is False.

Waves
  The selected row ids are consumed in fixed-size waves (WAVE_SIZE, default
  3).  All rows of a wave resolve concurrently; the next wave starts only
  after every row of the current one has been written back, which bounds
  outstanding classifier calls and keeps progress monotonic.  Rows already
  coded or manually edited at dispatch time are skipped but still counted.

Pause / resume
  pause() sets a CancellationToken that is checked only between waves;
  calls already in flight always finish.  The unprocessed ids stay queued,
  so resume() continues exactly where the run stopped.

Errors
  Each row's failure is captured by ResolutionStrategy.outcome() and stored
  on that row only; siblings and later waves are unaffected.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from statcoder.config.settings import Settings
from statcoder.domain.exceptions import OrchestrationError, ValidationError
from statcoder.domain.models import (
    BatchProgress,
    CodedResult,
    CodingStatus,
    ColumnMapping,
    Confidence,
    ModuleType,
    ProcessedRow,
    ReferenceEntry,
    ResolutionOutcome,
    RunStatus,
)
from statcoder.services.reference_store import ReferenceStore
from statcoder.services.resolver import ResolutionStrategy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], None]


class CancellationToken:
    """Cooperative stop flag, checked by the run loop at wave boundaries."""

    def __init__(self) -> None:
        self._requested = False

    @property
    def requested(self) -> bool:
        return self._requested

    def request(self) -> None:
        self._requested = True

    def clear(self) -> None:
        self._requested = False


class BatchOrchestrator:
    """Owns one batch of rows and the run that codes them.

    Args:
        resolver:    ResolutionStrategy used for every row.
        settings:    Shared application settings (wave size).
        store:       ReferenceStore, needed only for learn_from_row().
        on_progress: Optional callback invoked with BatchProgress after
                     every wave (and when a run starts).
    """

    def __init__(
        self,
        resolver: ResolutionStrategy,
        settings: Settings,
        store: ReferenceStore | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._wave_size = max(1, settings.wave_size)
        self._on_progress = on_progress
        self._token = CancellationToken()
        self._task: asyncio.Task | None = None
        self._reset_state()

    def _reset_state(self) -> None:
        self._status = RunStatus.IDLE
        self._module = ModuleType.ISCO08
        self._raw: list[dict[str, Any]] = []
        self._rows: list[ProcessedRow] = []
        self._positions: dict[str, int] = {}
        self._queue: list[str] = []
        self._progress = BatchProgress()
        self._token.clear()

    # ── Read-only state ────────────────────────────────────────────────────

    @property
    def status(self) -> RunStatus:
        """Lifecycle state; PAUSED means a queue is waiting, not a live task."""
        return self._status

    @property
    def module(self) -> ModuleType:
        return self._module

    @property
    def progress(self) -> BatchProgress:
        return self._progress

    @property
    def rows(self) -> list[ProcessedRow]:
        return list(self._rows)

    @property
    def remaining_ids(self) -> list[str]:
        """Row ids selected for the current run but not yet dispatched."""
        return list(self._queue)

    @property
    def is_active(self) -> bool:
        """True while a run task is executing.

        A pause requested mid-wave keeps this True until the wave settles;
        afterwards the status is PAUSED and this is False.
        """
        return self._task is not None and not self._task.done()

    def row(self, row_id: str) -> ProcessedRow:
        try:
            return self._rows[self._positions[row_id]]
        except KeyError:
            raise OrchestrationError(f"Unknown row id: {row_id}") from None

    # ── Batch setup ────────────────────────────────────────────────────────

    def load(self, records: Iterable[dict[str, Any]]) -> None:
        """Take raw input records; the batch then waits for a column mapping."""
        self._require_idle_run("load a new batch")
        self._reset_state()
        self._raw = [dict(r) for r in records]
        self._status = RunStatus.MAPPING if self._raw else RunStatus.IDLE
        logger.info("Batch loaded | records=%d", len(self._raw))

    def initialize(self, mapping: ColumnMapping, module: ModuleType) -> list[ProcessedRow]:
        """Build pending ProcessedRows from the loaded records.

        Raises:
            ValidationError: If the primary column exists in no record.
            OrchestrationError: If a run is active or nothing was loaded.
        """
        self._require_idle_run("re-initialise the batch")
        if not self._raw:
            raise OrchestrationError("No records loaded")
        if not any(mapping.primary_column in r for r in self._raw):
            raise ValidationError(f"Column {mapping.primary_column!r} not found in input")

        self._module = module
        self._set_rows(build_rows(self._raw, mapping))
        self._queue = []
        self._progress = BatchProgress(completed=0, total=len(self._rows))
        self._token.clear()
        self._status = RunStatus.MAPPING
        logger.info(
            "Batch initialised | rows=%d module=%s primary=%s",
            len(self._rows), module.value, mapping.primary_column,
        )
        return self.rows

    def reset(self) -> None:
        """Discard the batch and return to ``idle``."""
        self._require_idle_run("reset")
        self._reset_state()
        self._task = None

    # ── Run control ────────────────────────────────────────────────────────

    def start(self, row_ids: Optional[Iterable[str]] = None) -> asyncio.Task | None:
        """Launch a background run; must be called from a running event loop.

        Args:
            row_ids: Rows to (re)resolve, in batch order.  None selects every
                     row; rows already coded or manually edited are skipped
                     but counted toward progress.

        Returns:
            The run task, or None if a run is already active.
        """
        if self.is_active:
            logger.info("start ignored: a run is already active")
            return None
        if not self._rows:
            raise OrchestrationError("No batch initialised")

        targets = [r.id for r in self._rows] if row_ids is None else self._ordered(row_ids)
        self._queue = targets
        self._progress = BatchProgress(completed=0, total=len(targets))
        return self._launch()

    async def run(self, row_ids: Optional[Iterable[str]] = None) -> BatchProgress:
        """Start a run and wait for it to finish or pause."""
        self.start(row_ids)
        await self.wait()
        return self._progress

    def pause(self) -> None:
        """Request a pause; it takes effect at the next wave boundary."""
        if not self.is_active:
            raise OrchestrationError("No active run to pause")
        self._token.request()
        logger.info("Pause requested | completed=%d/%d", self._progress.completed, self._progress.total)

    def resume(self) -> asyncio.Task | None:
        """Continue a paused run from the first unprocessed row."""
        if self.is_active:
            # Pause was requested but the wave has not finished yet
            self._token.clear()
            return self._task
        if self._status != RunStatus.PAUSED:
            raise OrchestrationError(f"Cannot resume from status {self._status.value!r}")
        logger.info("Resuming | remaining=%d", len(self._queue))
        return self._launch()

    async def wait(self) -> None:
        """Wait for the current run task, if any."""
        if self._task is not None:
            await self._task

    # ── Retry ──────────────────────────────────────────────────────────────

    def retry_errors(self) -> asyncio.Task | None:
        ids = [r.id for r in self._rows if r.coding_status == CodingStatus.ERROR]
        if not ids:
            logger.info("retry_errors: no failed rows")
            return None
        return self.retry_selected(ids)

    def retry_row(self, row_id: str) -> asyncio.Task | None:
        return self.retry_selected([row_id])

    def retry_selected(self, row_ids: Iterable[str]) -> asyncio.Task | None:
        """Reset the given rows to ``pending`` and run exactly those rows.

        Explicitly targeted rows are re-resolved even if they were coded or
        manually edited before.
        """
        if self.is_active:
            logger.info("retry ignored: a run is already active")
            return None
        ids = self._ordered(row_ids)
        if self._status == RunStatus.PAUSED and self._queue:
            logger.info("Retry replaces paused run | dropped_remaining=%d", len(self._queue))
        for row_id in ids:
            self._replace(
                row_id,
                coding_status=CodingStatus.PENDING,
                result=None,
                error_message=None,
                manually_edited=False,
            )
        return self.start(ids)

    # ── Row edits ──────────────────────────────────────────────────────────

    def apply_manual_result(self, row_id: str, result: CodedResult) -> ProcessedRow:
        """Store a human decision; bulk runs will skip this row from now on."""
        manual = result.model_copy(update={"confidence": Confidence.MANUAL})
        return self._replace(
            row_id,
            coding_status=CodingStatus.CODED,
            result=manual,
            error_message=None,
            manually_edited=True,
        )

    def remove_rows(self, row_ids: Iterable[str]) -> int:
        """Delete rows from the batch; returns how many were removed."""
        self._require_idle_run("remove rows")
        doomed = set(row_ids)
        before = len(self._rows)
        self._set_rows([r for r in self._rows if r.id not in doomed])
        self._queue = [i for i in self._queue if i not in doomed]
        if self._status == RunStatus.PAUSED:
            self._progress = BatchProgress(
                completed=self._progress.completed,
                total=self._progress.completed + len(self._queue),
            )
        else:
            self._progress = BatchProgress(
                completed=min(self._progress.completed, len(self._rows)),
                total=len(self._rows),
            )
        return before - len(self._rows)

    def learn_from_row(self, row_id: str) -> ReferenceEntry:
        """Add a High-confidence row to the local dictionary."""
        if self._store is None:
            raise OrchestrationError("No reference store configured")
        return self._store.learn(self.row(row_id), self._module)

    def export_records(self) -> list[dict[str, Any]]:
        return [r.to_record() for r in self._rows]

    # ── Run loop ───────────────────────────────────────────────────────────

    def _launch(self) -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise OrchestrationError("Runs must be started from a running event loop") from None
        self._token.clear()
        self._status = RunStatus.PROCESSING
        self._publish()
        self._task = loop.create_task(self._run())
        return self._task

    async def _run(self) -> None:
        logger.info(
            "Run started | module=%s queued=%d wave_size=%d",
            self._module.value, len(self._queue), self._wave_size,
        )
        try:
            while self._queue:
                if self._token.requested:
                    self._status = RunStatus.PAUSED
                    logger.info(
                        "Run paused | completed=%d/%d remaining=%d",
                        self._progress.completed, self._progress.total, len(self._queue),
                    )
                    return
                wave = self._queue[: self._wave_size]
                await self._run_wave(wave)
                self._queue = self._queue[len(wave):]
                self._progress = BatchProgress(
                    completed=min(self._progress.total, self._progress.completed + len(wave)),
                    total=self._progress.total,
                )
                self._publish()
        except Exception:
            logger.exception("Run aborted unexpectedly; state kept for resume")
            self._status = RunStatus.PAUSED
            raise
        self._token.clear()
        self._status = RunStatus.REVIEW
        errors = sum(1 for r in self._rows if r.coding_status == CodingStatus.ERROR)
        logger.info(
            "Run complete | completed=%d/%d errors=%d",
            self._progress.completed, self._progress.total, errors,
        )

    async def _run_wave(self, wave: list[str]) -> None:
        dispatch = []
        for row_id in wave:
            pos = self._positions.get(row_id)
            if pos is None or self._rows[pos].is_settled:
                continue
            dispatch.append(self._rows[pos])
        if dispatch:
            logger.debug("Wave dispatch | rows=%s", ",".join(r.id for r in dispatch))
            await asyncio.gather(*(self._resolve_into_slot(r) for r in dispatch))

    async def _resolve_into_slot(self, row: ProcessedRow) -> None:
        outcome = await self._resolver.outcome(row, self._module)
        self._write(row.id, outcome)

    def _write(self, row_id: str, outcome: ResolutionOutcome) -> None:
        pos = self._positions.get(row_id)
        if pos is None or self._rows[pos].manually_edited:
            # Removed or hand-coded while the call was in flight
            return
        if outcome.ok:
            self._replace(
                row_id,
                coding_status=CodingStatus.CODED,
                result=outcome.result,
                error_message=None,
            )
        else:
            self._replace(
                row_id,
                coding_status=CodingStatus.ERROR,
                result=None,
                error_message=outcome.error_message,
            )

    # ── Helpers ────────────────────────────────────────────────────────────

    def _publish(self) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(self._progress)
        except Exception:
            logger.exception("Progress callback raised")

    def _replace(self, row_id: str, **changes: Any) -> ProcessedRow:
        pos = self._positions.get(row_id)
        if pos is None:
            raise OrchestrationError(f"Unknown row id: {row_id}")
        updated = self._rows[pos].model_copy(update=changes)
        self._rows[pos] = updated
        return updated

    def _set_rows(self, rows: list[ProcessedRow]) -> None:
        self._rows = rows
        self._positions = {r.id: i for i, r in enumerate(rows)}

    def _ordered(self, row_ids: Iterable[str]) -> list[str]:
        """Validate ids and return them de-duplicated in batch order."""
        wanted = set(row_ids)
        unknown = wanted - self._positions.keys()
        if unknown:
            raise OrchestrationError(f"Unknown row id(s): {', '.join(sorted(unknown))}")
        return [r.id for r in self._rows if r.id in wanted]

    def _require_idle_run(self, action: str) -> None:
        if self.is_active:
            raise OrchestrationError(f"Cannot {action} while a run is active")


# ── Pure function: row construction ────────────────────────────────────────

def build_rows(records: list[dict[str, Any]], mapping: ColumnMapping) -> list[ProcessedRow]:
    """Turn raw records into pending ProcessedRows using a column mapping.

    Ids come from ``mapping.id_column`` when present and non-blank; missing
    or duplicate ids are replaced by a fresh UUID.
    """
    rows: list[ProcessedRow] = []
    seen: set[str] = set()
    for record in records:
        row_id = _cell(record, mapping.id_column)
        if not row_id or row_id in seen:
            if row_id:
                logger.warning("Duplicate row id %r replaced with a UUID", row_id)
            row_id = str(uuid4())
        seen.add(row_id)
        rows.append(
            ProcessedRow(
                id=row_id,
                data=dict(record),
                primary_text=_cell(record, mapping.primary_column),
                secondary_text=_cell(record, mapping.secondary_column),
                tertiary_text=_cell(record, mapping.tertiary_column),
            )
        )
    return rows


def _cell(record: dict[str, Any], column: str | None) -> str:
    if not column:
        return ""
    value = record.get(column)
    return "" if value is None else str(value).strip()

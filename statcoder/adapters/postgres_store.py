"""
adapters/postgres_store.py
──────────────────────────────────────────────────────────────────────────────
Implements ReferenceStorePort using psycopg2.

Database layout (created on first connection):
  Table : reference_entries
  Cols  : id (PK), module, term, code, label, description, source, added_at
  Index : btree (module); every read is a module-scoped scan

Atomicity:
  Each port method runs inside one transaction (``with conn:`` commits on
  success, rolls back on error), so a bulk upsert either lands completely or
  not at all.

Connection management:
  - A single connection is opened lazily and reused.
  - On OperationalError the connection is reset and one retry is attempted.
  - Calls arrive from worker threads (asyncio.to_thread); a lock serialises
    use of the shared connection.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, TypeVar

import psycopg2
import psycopg2.extras

from statcoder.config.settings import Settings
from statcoder.domain.exceptions import StorageError
from statcoder.domain.models import ModuleType, ReferenceEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLS = (
    "id",
    "module",
    "term",
    "code",
    "label",
    "description",
    "source",
    "added_at",
)
_SELECT_COLS = ", ".join(_COLS)

_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS reference_entries (
        id          TEXT PRIMARY KEY,
        module      TEXT NOT NULL,
        term        TEXT NOT NULL,
        code        TEXT NOT NULL,
        label       TEXT NOT NULL,
        description TEXT,
        source      TEXT NOT NULL,
        added_at    TIMESTAMPTZ NOT NULL
    );
    CREATE INDEX IF NOT EXISTS reference_entries_module_idx
        ON reference_entries (module);
"""


class PostgresReferenceStore:
    """psycopg2 implementation of ReferenceStorePort.

    Injected into ReferenceStore via services/container.py.
    """

    def __init__(self, settings: Settings) -> None:
        self._dsn = settings.db_dsn
        self._conn: Any = None
        self._lock = threading.Lock()
        logger.debug("PostgresReferenceStore ready | dsn=%s", self._dsn)

    # ── ReferenceStorePort implementation ──────────────────────────────────

    def upsert(self, entries: list[ReferenceEntry]) -> None:
        if not entries:
            return
        sql = f"""
            INSERT INTO reference_entries ({_SELECT_COLS})
            VALUES %s
            ON CONFLICT (id) DO UPDATE SET
                module      = EXCLUDED.module,
                term        = EXCLUDED.term,
                code        = EXCLUDED.code,
                label       = EXCLUDED.label,
                description = EXCLUDED.description,
                source      = EXCLUDED.source,
                added_at    = EXCLUDED.added_at
        """
        rows = [_entry_to_row(e) for e in entries]

        def _write(cur) -> None:
            psycopg2.extras.execute_values(cur, sql, rows, page_size=500)

        self._run("upsert", _write)
        logger.debug("upsert committed | entries=%d", len(rows))

    def fetch_module(self, module: ModuleType) -> list[ReferenceEntry]:
        sql = f"""
            SELECT {_SELECT_COLS}
            FROM   reference_entries
            WHERE  module = %s
            ORDER  BY added_at, id
        """

        def _read(cur) -> list[dict]:
            cur.execute(sql, (module.value,))
            return list(cur.fetchall())

        rows = self._run("fetch_module", _read)
        try:
            return [ReferenceEntry(**row) for row in rows]
        except Exception as exc:
            raise StorageError(
                f"Corrupt reference row for module {module.value}: {exc}"
            ) from exc

    def delete(self, entry_id: str) -> ModuleType | None:
        sql = "DELETE FROM reference_entries WHERE id = %s RETURNING module"

        def _delete(cur) -> str | None:
            cur.execute(sql, (entry_id,))
            row = cur.fetchone()
            return row["module"] if row else None

        module = self._run("delete", _delete)
        return ModuleType(module) if module else None

    def clear(self, module: ModuleType | None = None) -> None:
        def _clear(cur) -> None:
            if module is None:
                cur.execute("DELETE FROM reference_entries")
            else:
                cur.execute(
                    "DELETE FROM reference_entries WHERE module = %s",
                    (module.value,),
                )

        self._run("clear", _clear)

    def count_by_module(self) -> dict[ModuleType, int]:
        sql = "SELECT module, COUNT(*) AS n FROM reference_entries GROUP BY module"

        def _count(cur) -> list[dict]:
            cur.execute(sql)
            return list(cur.fetchall())

        counts: dict[ModuleType, int] = {}
        for row in self._run("count_by_module", _count):
            try:
                counts[ModuleType(row["module"])] = int(row["n"])
            except ValueError:
                logger.warning("Ignoring unknown module in store: %r", row["module"])
        return counts

    # ── Connection helpers ─────────────────────────────────────────────────

    def _get_conn(self) -> Any:
        """Return an open connection, creating or reusing one."""
        if self._conn is None or self._conn.closed:
            self._conn = self._new_conn()
        return self._conn

    def _new_conn(self) -> Any:
        """Open a fresh psycopg2 connection and make sure the table exists."""
        try:
            conn = psycopg2.connect(self._dsn)
            with conn:
                with conn.cursor() as cur:
                    cur.execute(_SCHEMA_SQL)
            logger.debug("PostgresReferenceStore: new connection opened")
            return conn
        except psycopg2.Error as exc:
            raise StorageError(f"Cannot connect to database: {exc}") from exc

    def _run(self, op: str, fn: Callable[[Any], T]) -> T:
        """Run ``fn(cursor)`` in one transaction, with one auto-reconnect."""
        with self._lock:
            for attempt in (1, 2):
                conn = self._get_conn()
                try:
                    with conn:
                        with conn.cursor(
                            cursor_factory=psycopg2.extras.RealDictCursor
                        ) as cur:
                            return fn(cur)
                except psycopg2.OperationalError as exc:
                    if attempt == 1:
                        logger.warning("DB OperationalError, reconnecting: %s", exc)
                        self._conn = None
                    else:
                        raise StorageError(
                            f"{op} failed after reconnect: {exc}"
                        ) from exc
                except psycopg2.Error as exc:
                    raise StorageError(f"{op} failed: {exc}") from exc
        raise StorageError(f"{op} failed")  # unreachable

    def close(self) -> None:
        """Explicitly close the connection (optional; GC handles it otherwise)."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.debug("PostgresReferenceStore: connection closed")


def _entry_to_row(entry: ReferenceEntry) -> tuple:
    return (
        entry.id,
        entry.module.value,
        entry.term,
        entry.code,
        entry.label,
        entry.description,
        entry.source.value,
        entry.added_at,
    )

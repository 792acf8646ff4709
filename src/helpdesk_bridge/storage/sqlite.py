"""SQLite-backed dedup ledger implementation."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from types import TracebackType

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from ..core.errors import StorageError
from ..core.interfaces import DedupLedger
from ..core.models import ChatThreadRef, LedgerFlag, SLAState

LOGGER = logging.getLogger(__name__)

CLEARABLE_FLAGS = frozenset({LedgerFlag.CLOSED_NOTIFIED, LedgerFlag.REOPENED_NOTIFIED})

_COMMENT_WATERMARK = "comment_watermark"


class SqliteLedger(DedupLedger):
    """Persist dedup flags, the comment watermark, chat threads and SLA states.

    Every write runs in its own transaction with ``synchronous=FULL`` so a
    mark survives a crash as soon as the call returns.
    """

    def __init__(self, settings: StorageSettings) -> None:
        """Open the ledger file, verify it and apply migrations."""
        self._settings = settings
        db_path = Path(settings.ledger_path)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA synchronous = FULL")
            self._verify_integrity()
            self._apply_migrations()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"cannot open ledger at {db_path}: {exc}") from exc

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteLedger:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Flags -------------------------------------------------------------------
    def has(self, flag: LedgerFlag, key: str | int) -> bool:
        """Return whether ``key`` is marked in the ``flag`` namespace."""
        row = self._query_one(
            "SELECT 1 FROM ledger_flags WHERE namespace = ? AND key = ?",
            (flag.value, str(key)),
        )
        return row is not None

    def mark(self, flag: LedgerFlag, key: str | int) -> None:
        """Mark ``key``; marking twice is a no-op."""
        LOGGER.debug("Marking %s %s", flag.value, key)
        self._write(
            "INSERT OR IGNORE INTO ledger_flags (namespace, key, marked_at) VALUES (?, ?, ?)",
            (flag.value, str(key), serialize_datetime(utcnow())),
        )

    def clear(self, flag: LedgerFlag, key: str | int) -> None:
        """Remove ``key`` from the closed or reopened namespace."""
        if flag not in CLEARABLE_FLAGS:
            raise ValueError(f"flag {flag.value} cannot be cleared")
        LOGGER.debug("Clearing %s %s", flag.value, key)
        self._write(
            "DELETE FROM ledger_flags WHERE namespace = ? AND key = ?",
            (flag.value, str(key)),
        )

    # Comment watermark -------------------------------------------------------
    def comment_watermark(self) -> datetime | None:
        """Return the last-seen operator comment timestamp."""
        row = self._query_one(
            "SELECT value FROM ledger_values WHERE name = ?", (_COMMENT_WATERMARK,)
        )
        if row is None:
            return None
        return parse_datetime(row["value"])

    def advance_comment_watermark(self, value: datetime) -> None:
        """Move the watermark forward; older values are ignored."""
        current = self.comment_watermark()
        if current is not None and value <= current:
            return
        LOGGER.debug("Advancing comment watermark to %s", value)
        self._write(
            """
            INSERT INTO ledger_values (name, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (_COMMENT_WATERMARK, serialize_datetime(value), serialize_datetime(utcnow())),
        )

    # Chat threads ------------------------------------------------------------
    def thread_ref(self, task_id: int) -> ChatThreadRef | None:
        """Return the chat thread of a task."""
        row = self._query_one(
            "SELECT channel, timestamp FROM chat_threads WHERE task_id = ?", (task_id,)
        )
        if row is None:
            return None
        return ChatThreadRef(channel=row["channel"], timestamp=row["timestamp"])

    def store_thread_ref(self, task_id: int, ref: ChatThreadRef) -> None:
        """Remember the chat thread of a task; the first write wins."""
        self._write(
            """
            INSERT OR IGNORE INTO chat_threads (task_id, channel, timestamp, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (task_id, ref.channel, ref.timestamp, serialize_datetime(utcnow())),
        )

    # SLA states --------------------------------------------------------------
    def sla_state(self, task_id: int) -> SLAState | None:
        """Return the SLA tracking record of a task."""
        row = self._query_one(
            """
            SELECT task_id, created_at, started_at, completed_at,
                   start_breached, resolution_breached
            FROM sla_states WHERE task_id = ?
            """,
            (task_id,),
        )
        if row is None:
            return None
        created_at = parse_datetime(row["created_at"])
        if created_at is None:
            raise StorageError(f"SLA state of task {task_id} has no creation time")
        return SLAState(
            task_id=row["task_id"],
            created_at=created_at,
            started_at=parse_datetime(row["started_at"]),
            completed_at=parse_datetime(row["completed_at"]),
            start_breached=bool(row["start_breached"]),
            resolution_breached=bool(row["resolution_breached"]),
        )

    def store_sla_state(self, state: SLAState) -> None:
        """Persist an SLA record, never unsetting breaches or timestamps."""
        self._write(
            """
            INSERT INTO sla_states (
                task_id, created_at, started_at, completed_at,
                start_breached, resolution_breached
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(task_id) DO UPDATE SET
                started_at = COALESCE(sla_states.started_at, excluded.started_at),
                completed_at = COALESCE(sla_states.completed_at, excluded.completed_at),
                start_breached = MAX(sla_states.start_breached, excluded.start_breached),
                resolution_breached = MAX(
                    sla_states.resolution_breached, excluded.resolution_breached
                )
            """,
            (
                state.task_id,
                serialize_datetime(state.created_at),
                serialize_datetime(state.started_at),
                serialize_datetime(state.completed_at),
                int(state.start_breached),
                int(state.resolution_breached),
            ),
        )

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers --------------------------------------------------------
    def _query_one(self, sql: str, params: tuple[object, ...]) -> sqlite3.Row | None:
        try:
            return self._connection.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"ledger read failed: {exc}") from exc

    def _write(self, sql: str, params: tuple[object, ...]) -> None:
        try:
            with self._connection:
                self._connection.execute(sql, params)
        except sqlite3.Error as exc:
            LOGGER.error("Ledger write failed: %s", exc)
            raise StorageError(f"ledger write failed: {exc}") from exc

    def _verify_integrity(self) -> None:
        row = self._connection.execute("PRAGMA quick_check").fetchone()
        if row is None or row[0] != "ok":
            raise sqlite3.DatabaseError(f"integrity check failed: {row[0] if row else None}")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)


__all__ = ["CLEARABLE_FLAGS", "SqliteLedger"]

"""Sync state tracking per (owner, source).

Allowed moves: idle -> running, running -> idle | error, error -> running.
``advance`` commits a page cursor while running. ``fail`` never touches the
cursor, so the next run resumes from the last committed position.
"""

from __future__ import annotations

import logging
import sqlite3

from message_search.core.errors import InvalidSyncTransition, SyncAlreadyRunning
from message_search.core.logging import log_context
from message_search.db.sqlite import SQLiteDatabase
from message_search.models.entities import SyncStateSnapshot, SyncStatus
from message_search.security.identity import Principal, require_principal
from message_search.utils.ids import new_id
from message_search.utils.time import from_ms, now_ms

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.IDLE: frozenset({SyncStatus.RUNNING}),
    SyncStatus.RUNNING: frozenset({SyncStatus.IDLE, SyncStatus.ERROR}),
    SyncStatus.ERROR: frozenset({SyncStatus.RUNNING}),
}


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in _TRANSITIONS[current]


class SyncStateTracker:
    """Persisted cursor and status for each (owner, source) pair."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, owner: Principal, source: str) -> SyncStateSnapshot:
        owner = require_principal(owner)
        row = self._row(owner, source)
        if row is None:
            return SyncStateSnapshot(owner_id=owner.id, source=source)
        return _row_to_snapshot(row)

    def list_states(self, owner: Principal) -> list[SyncStateSnapshot]:
        owner = require_principal(owner)
        rows = self.db.query("SELECT * FROM sync_state WHERE owner_id = ? ORDER BY source", [owner.id])
        return [_row_to_snapshot(row) for row in rows]

    def begin(self, owner: Principal, source: str) -> SyncStateSnapshot:
        """Enter ``running``; the cursor is left as it is.

        Raises:
            SyncAlreadyRunning: another run holds the pair; nothing is changed.
        """
        owner = require_principal(owner)
        with self.db.transaction():
            row = self._row(owner, source)
            if row is None:
                now = now_ms()
                self.db.execute(
                    """
                    INSERT INTO sync_state (id, owner_id, source, cursor, status, created_at, updated_at)
                    VALUES (?, ?, ?, NULL, 'running', ?, ?)
                    """,
                    [new_id("syn"), owner.id, source, now, now],
                )
            else:
                current = SyncStatus(row["status"])
                if current is SyncStatus.RUNNING:
                    raise SyncAlreadyRunning(
                        f"sync for source '{source}' is already running",
                        {"source": source},
                    )
                self._set_status(owner, source, current, SyncStatus.RUNNING)
        logger.info("Sync started", extra=log_context(owner, source))
        return self.get(owner, source)

    def advance(self, owner: Principal, source: str, cursor: str | None) -> SyncStateSnapshot:
        """Commit a page cursor mid-run without finishing the run."""
        owner = require_principal(owner)
        with self.db.transaction():
            self._require_running(owner, source, "advance")
            self.db.execute(
                "UPDATE sync_state SET cursor = ?, updated_at = ? WHERE owner_id = ? AND source = ?",
                [cursor, now_ms(), owner.id, source],
            )
        return self.get(owner, source)

    def complete(self, owner: Principal, source: str, cursor: str | None) -> SyncStateSnapshot:
        """``running -> idle``; cursor and ``last_synced_at`` change together."""
        owner = require_principal(owner)
        with self.db.transaction():
            self._require_running(owner, source, "complete")
            now = now_ms()
            self.db.execute(
                """
                UPDATE sync_state
                SET status = 'idle', cursor = ?, error = NULL, last_synced_at = ?, updated_at = ?
                WHERE owner_id = ? AND source = ?
                """,
                [cursor, now, now, owner.id, source],
            )
        logger.info("Sync completed", extra=log_context(owner, source, cursor=cursor))
        return self.get(owner, source)

    def fail(self, owner: Principal, source: str, detail: str) -> SyncStateSnapshot:
        """``running -> error``; records ``detail`` and keeps the cursor."""
        owner = require_principal(owner)
        with self.db.transaction():
            self._require_running(owner, source, "fail")
            self.db.execute(
                "UPDATE sync_state SET status = 'error', error = ?, updated_at = ? WHERE owner_id = ? AND source = ?",
                [detail, now_ms(), owner.id, source],
            )
        logger.warning("Sync failed: %s", detail, extra=log_context(owner, source))
        return self.get(owner, source)

    def abandon(self, owner: Principal, source: str, reason: str = "abandoned run") -> SyncStateSnapshot:
        """Move a run orphaned by a dead process to ``error``."""
        return self.fail(owner, source, reason)

    def abandon_orphaned(self, reason: str = "abandoned run") -> int:
        """Move every ``running`` row to ``error``; returns how many moved.

        Called before this process starts any run of its own, so any row
        still marked ``running`` belongs to a process that is gone. Cursors
        are kept and the next run resumes from the last committed page.
        """
        with self.db.transaction():
            rows = self.db.query("SELECT owner_id, source FROM sync_state WHERE status = 'running'")
            self.db.execute(
                "UPDATE sync_state SET status = 'error', error = ?, updated_at = ? WHERE status = 'running'",
                [reason, now_ms()],
            )
        for row in rows:
            logger.warning("Sync failed: %s", reason, extra=log_context(row["owner_id"], row["source"]))
        return len(rows)

    # ------------------------------------------------------------------

    def _row(self, owner: Principal, source: str) -> sqlite3.Row | None:
        return self.db.query_one(
            "SELECT * FROM sync_state WHERE owner_id = ? AND source = ?",
            [owner.id, source],
        )

    def _require_running(self, owner: Principal, source: str, action: str) -> None:
        row = self._row(owner, source)
        current = SyncStatus(row["status"]) if row is not None else SyncStatus.IDLE
        if current is not SyncStatus.RUNNING:
            raise InvalidSyncTransition(
                f"cannot {action} sync for '{source}' while {current.value}",
                {"source": source, "status": current.value, "action": action},
            )

    def _set_status(self, owner: Principal, source: str, current: SyncStatus, target: SyncStatus) -> None:
        if not can_transition(current, target):
            raise InvalidSyncTransition(
                f"cannot move sync for '{source}' from {current.value} to {target.value}",
                {"source": source, "from": current.value, "to": target.value},
            )
        self.db.execute(
            "UPDATE sync_state SET status = ?, updated_at = ? WHERE owner_id = ? AND source = ?",
            [target.value, now_ms(), owner.id, source],
        )


def _row_to_snapshot(row: sqlite3.Row) -> SyncStateSnapshot:
    return SyncStateSnapshot(
        owner_id=row["owner_id"],
        source=row["source"],
        cursor=row["cursor"],
        status=SyncStatus(row["status"]),
        error=row["error"],
        last_synced_at=from_ms(row["last_synced_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


__all__ = ["SyncStateTracker", "can_transition"]

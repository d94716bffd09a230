"""Async repository for batch and session run history."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import Optional

import aiosqlite

from ..models.batch import BatchRequest
from ..models.session import RunOutcome

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class RunHistoryRepository:
    """Async repository for run history in SQLite."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create_batch(self, request: BatchRequest, session_count: Optional[int] = None) -> int:
        """Insert a running batch and return its id."""
        cursor = await self._db.execute(
            """
            INSERT INTO batches (
                run_mode, country_code, network_code, base_identifier,
                session_count, ues_per_session, started_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                request.run_mode.value, request.country_code, request.network_code,
                request.base_identifier,
                session_count if session_count is not None else request.session_count,
                request.ues_per_session, datetime.now().isoformat(),
            ),
        )
        await self._db.commit()
        return cursor.lastrowid

    async def record_session(
        self,
        batch_id: int,
        session_index: int,
        identifier: str,
        ue_count: int,
        outcome: RunOutcome,
        started_at: str,
    ):
        await self._db.execute(
            """
            INSERT INTO sessions (
                batch_id, session_index, identifier, ue_count, success,
                exit_code, timed_out, failure, error, duration, started_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                batch_id, session_index, identifier, ue_count,
                1 if outcome.success else 0, outcome.exit_code,
                1 if outcome.timed_out else 0, outcome.failure,
                outcome.error[-2000:], round(outcome.duration, 3), started_at,
            ),
        )
        await self._db.commit()

    async def finish_batch(
        self,
        batch_id: int,
        status: str,
        sessions_run: int,
        sessions_failed: int,
        identifiers_consumed: int,
    ):
        await self._db.execute(
            """
            UPDATE batches SET
                completed_at = ?, status = ?, sessions_run = ?,
                sessions_failed = ?, identifiers_consumed = ?
            WHERE id = ?
            """,
            (
                datetime.now().isoformat(), status, sessions_run,
                sessions_failed, identifiers_consumed, batch_id,
            ),
        )
        await self._db.commit()

    async def list_batches(self, limit: int = 20) -> list[dict]:
        """Most recent batches first."""
        async with self._db.execute(
            "SELECT * FROM batches ORDER BY id DESC LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_dict(row, cursor.description) for row in rows]

    async def get_batch(self, batch_id: int) -> Optional[dict]:
        """One batch with its sessions in run order."""
        async with self._db.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            batch = self._row_to_dict(row, cursor.description)

        async with self._db.execute(
            "SELECT * FROM sessions WHERE batch_id = ? ORDER BY session_index", (batch_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            sessions = [self._row_to_dict(r, cursor.description) for r in rows]

        for s in sessions:
            s["success"] = bool(s["success"])
            s["timed_out"] = bool(s["timed_out"])
        batch["sessions"] = sessions
        return batch

    def _row_to_dict(self, row: tuple, description) -> dict:
        col_names = [d[0] for d in description]
        return dict(zip(col_names, row))

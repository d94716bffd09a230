"""Process-wide run state owned by the orchestrator."""

from __future__ import annotations

from collections import deque
from typing import Optional

from ..config import LOG_BUFFER_SIZE
from ..constants import STATE_IDLE
from ..models.schedule import ScheduledTrigger
from ..models.session import LogEntry, RunStatus


class RunState:
    """Counters, pending triggers and the two bounded log buffers.

    Only the orchestrator mutates this; HTTP handlers read ``snapshot()``.
    Logs survive ``reset()`` and are emptied by ``clear_logs()``.
    """

    def __init__(self, log_size: int = LOG_BUFFER_SIZE):
        self.session_log: deque[LogEntry] = deque(maxlen=log_size)
        self.process_log: deque[LogEntry] = deque(maxlen=log_size)
        self.reset()

    def reset(
        self,
        run_mode: Optional[str] = None,
        total_count: int = 0,
        base_identifier: Optional[str] = None,
    ):
        self.state = STATE_IDLE
        self.run_mode = run_mode
        self.batch_id: Optional[int] = None
        self.current_index = 0
        self.total_count = total_count
        self.current_identifier = base_identifier
        self.sessions_run = 0
        self.sessions_failed = 0
        self.identifiers_consumed = 0
        self.cancel_requested = False
        self.triggers: list[ScheduledTrigger] = []
        self.identifiers_exhausted = False

    @property
    def is_running(self) -> bool:
        return self.state != STATE_IDLE

    @property
    def pending_triggers(self) -> list[ScheduledTrigger]:
        return [t for t in self.triggers if not t.has_fired]

    def clear_logs(self):
        self.session_log.clear()
        self.process_log.clear()

    def snapshot(self, include_logs: bool = True) -> RunStatus:
        """Current state; logs are newest first."""
        pending = self.pending_triggers
        return RunStatus(
            state=self.state,
            is_running=self.is_running,
            run_mode=self.run_mode,
            batch_id=self.batch_id,
            current_index=self.current_index,
            total_count=self.total_count,
            current_identifier=self.current_identifier,
            sessions_run=self.sessions_run,
            sessions_failed=self.sessions_failed,
            identifiers_consumed=self.identifiers_consumed,
            identifiers_exhausted=self.identifiers_exhausted,
            cancel_requested=self.cancel_requested,
            pending_triggers=pending,
            next_trigger=pending[0] if pending else None,
            session_log=list(reversed(self.session_log)) if include_logs else [],
            process_log=list(reversed(self.process_log)) if include_logs else [],
        )

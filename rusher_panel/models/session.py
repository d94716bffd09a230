"""Pydantic models for session outcomes and run state snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..constants import LEVEL_INFO, STATE_IDLE
from .schedule import ScheduledTrigger


class LogEntry(BaseModel):
    """One timestamped line in a run-state log buffer."""

    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))
    message: str
    level: str = LEVEL_INFO
    session: Optional[str] = None  # identifier of the session that produced it


class RunOutcome(BaseModel):
    """Terminal result of one Process Runner invocation."""

    success: bool = False
    exit_code: Optional[int] = None
    output: str = ""
    error: str = ""
    timed_out: bool = False
    failure: Optional[str] = None  # launch_error, timeout, exit_code
    duration: float = 0.0


class RunStatus(BaseModel):
    """Snapshot of the orchestrator run state."""

    state: str = STATE_IDLE  # idle, running, stopping
    is_running: bool = False
    run_mode: Optional[str] = None
    batch_id: Optional[int] = None
    current_index: int = 0
    total_count: int = 0
    current_identifier: Optional[str] = None
    sessions_run: int = 0
    sessions_failed: int = 0
    identifiers_consumed: int = 0
    identifiers_exhausted: bool = False
    cancel_requested: bool = False
    pending_triggers: list[ScheduledTrigger] = Field(default_factory=list)
    next_trigger: Optional[ScheduledTrigger] = None
    session_log: list[LogEntry] = Field(default_factory=list)
    process_log: list[LogEntry] = Field(default_factory=list)

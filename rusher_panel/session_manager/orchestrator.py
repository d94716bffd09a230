"""Session orchestration: sequential batches, flight-scheduled runs, and stop control.

Every session is "stage identifier in config.yml, then run PacketRusher".
That pair always runs under one lock, so the batch loop, scheduled triggers
and single ad-hoc runs never interleave their writes to the shared config.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from ..config import PACKETRUSHER_BINARY, PACKETRUSHER_DIR, SESSION_TIMEOUT
from ..constants import (
    EVENT_PROCESS_LOG,
    EVENT_SESSION_LOG,
    EVENT_STATUS,
    LEVEL_ERROR,
    LEVEL_INFO,
    LEVEL_SUCCESS,
    LEVEL_WARNING,
    MULTI_UE_COMMAND,
    SINGLE_UE_ARGS,
    STATE_IDLE,
    STATE_RUNNING,
    STATE_STOPPING,
)
from ..database.repository import RunHistoryRepository
from ..models.batch import BatchRequest, RunMode
from ..models.schedule import ScheduledTrigger
from ..models.session import LogEntry, RunOutcome
from .identifier import InvalidIdentifier, next_identifier
from .patcher import ConfigPatcher, ConfigurationError
from .process import ProcessRunner
from .relay import LogRelay
from .schedule import NoUpcomingFlights, ScheduleError, ScheduleSource, split_upcoming, to_triggers
from .state import RunState

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_LOG_LEVELS = {
    LEVEL_INFO: logging.INFO,
    LEVEL_SUCCESS: logging.INFO,
    LEVEL_WARNING: logging.WARNING,
    LEVEL_ERROR: logging.ERROR,
}


class BatchInProgress(RuntimeError):
    """A start request arrived while another run is active."""


def ue_args(ue_count: int) -> list[str]:
    """Binary arguments for a session of ``ue_count`` UEs."""
    if ue_count <= 1:
        return list(SINGLE_UE_ARGS)
    return [MULTI_UE_COMMAND, "-n", str(ue_count)]


class SessionOrchestrator:
    """Drives PacketRusher sessions one at a time and reports progress."""

    def __init__(
        self,
        state: RunState,
        patcher: ConfigPatcher,
        relay: LogRelay,
        runner: Optional[Any] = None,
        binary: Path = PACKETRUSHER_BINARY,
        workdir: Path = PACKETRUSHER_DIR,
        timeout: float = SESSION_TIMEOUT,
        history: Optional[RunHistoryRepository] = None,
        schedule_source: Optional[ScheduleSource] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.state = state
        self.patcher = patcher
        self.relay = relay
        self.runner = runner or ProcessRunner(on_line=self.record_process_line)
        self.binary = binary
        self.workdir = workdir
        self.timeout = timeout
        self.history = history
        self.schedule_source = schedule_source
        self._now = now

        self._session_lock = asyncio.Lock()
        self._start_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._batch_task: Optional[asyncio.Task] = None
        self._timers: list[asyncio.TimerHandle] = []
        self._trigger_tasks: set[asyncio.Task] = set()
        self._active_triggers = 0
        self._request: Optional[BatchRequest] = None
        self._end_status = "completed"
        self.last_summary: Optional[dict] = None

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def session_active(self) -> bool:
        return self._session_lock.locked()

    async def wait_idle(self):
        await self._idle.wait()

    # ── Logging & Relay ──────────────────────────────────────────────────────

    async def log(self, message: str, level: str = LEVEL_INFO, session: Optional[str] = None):
        """Append to the session log, log server-side and relay to observers."""
        entry = LogEntry(message=message, level=level, session=session)
        self.state.session_log.append(entry)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        await self.relay.broadcast({"type": EVENT_SESSION_LOG, **entry.model_dump()})

    async def record_process_line(self, line: str, level: str, session: Optional[str]):
        """Line sink for the process runner."""
        entry = LogEntry(message=line, level=level, session=session)
        self.state.process_log.append(entry)
        await self.relay.broadcast({"type": EVENT_PROCESS_LOG, **entry.model_dump()})

    async def publish_status(self):
        status = self.state.snapshot(include_logs=False)
        await self.relay.broadcast({"type": EVENT_STATUS, "status": status.model_dump(mode="json")})

    def clear_logs(self):
        self.state.clear_logs()
        logger.info("Log buffers cleared")

    # ── Start / Stop ─────────────────────────────────────────────────────────

    async def start(self, request: BatchRequest) -> dict:
        """Begin a batch in the background.

        Raises:
            BatchInProgress: another run is active.
            ScheduleError: scheduled mode and the flight feed is unusable.
        """
        if self.is_running or self._start_lock.locked():
            raise BatchInProgress("A batch is already running. Stop it first.")

        async with self._start_lock:
            if request.run_mode == RunMode.SCHEDULED:
                return await self._start_scheduled(request)
            return await self._start_immediate(request)

    async def _start_immediate(self, request: BatchRequest) -> dict:
        self._begin(request, total_count=request.session_count)
        await self._open_history(request, request.session_count)
        message = (
            f"Batch started: {request.session_count} session(s) x {request.ues_per_session} UE "
            f"from IMSI {request.imsi}"
        )
        if request.interval_seconds:
            message += f", every {request.interval_seconds:g}s"
        await self.log(message)
        await self.publish_status()
        self._batch_task = asyncio.create_task(self._run_batch(request))
        return {"success": True, "output": message, "error": ""}

    async def stop(self) -> dict:
        """Request cooperative cancellation. The in-flight session is not interrupted."""
        if not self.is_running:
            return {"success": True, "output": "No batch is running.", "error": ""}

        self.state.cancel_requested = True
        self._stop_event.set()
        self._cancel_timers()
        self.state.triggers = [t for t in self.state.triggers if t.has_fired]
        if self.state.state == STATE_RUNNING:
            self.state.state = STATE_STOPPING
        await self.log("Stop requested. Remaining sessions will not start.", LEVEL_WARNING)
        await self.publish_status()

        if self.state.run_mode == RunMode.SCHEDULED.value and self._active_triggers == 0:
            await self._finish("stopped")
        return {"success": True, "output": "Stop requested.", "error": ""}

    async def run_single(self, request: BatchRequest) -> RunOutcome:
        """Stage ``request.base_identifier`` and run one session, waiting for it.

        Raises:
            BatchInProgress: a batch or another session holds the runner.
            ConfigurationError: config.yml could not be staged.
        """
        if self.is_running or self.session_active or self._start_lock.locked():
            raise BatchInProgress("A session is already running.")

        identifier = request.base_identifier
        async with self._session_lock:
            await self.log(f"Running single session with IMSI {request.imsi}", session=identifier)
            self.patcher.apply_identifier(
                identifier, request.country_code, request.network_code, request.amf_address
            )
            outcome = await self.runner.run(
                self.binary, ue_args(1), self.workdir, self.timeout, session=identifier
            )
        await self._log_outcome(outcome, identifier)
        return outcome

    async def shutdown(self):
        """Stop, then cancel whatever is still running (server exit)."""
        if self.is_running:
            await self.stop()
        tasks = [t for t in [self._batch_task, *self._trigger_tasks] if t and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Sessions ─────────────────────────────────────────────────────────────

    def _begin(self, request: BatchRequest, total_count: int):
        self.state.reset(request.run_mode.value, total_count, request.base_identifier)
        self.state.state = STATE_RUNNING
        self._request = request
        self._end_status = "completed"
        self.last_summary = None
        self._stop_event.clear()
        self._idle.clear()

    async def _execute_session(self, request: BatchRequest, ue_count: int) -> Optional[RunOutcome]:
        """Patch then run one session under the session lock.

        Returns None without starting anything if a stop arrived while
        waiting for the lock. ConfigurationError propagates.
        """
        async with self._session_lock:
            if self.state.cancel_requested:
                return None

            identifier = self.state.current_identifier
            if not await self._check_range(identifier, ue_count):
                return None
            self.state.current_index += 1
            index = self.state.current_index
            started_at = self._now().isoformat()
            await self.log(
                f"Session {index}/{self.state.total_count}: msin {identifier} ({ue_count} UE)",
                session=identifier,
            )
            await self.publish_status()

            self.patcher.apply_identifier(
                identifier, request.country_code, request.network_code, request.amf_address
            )
            outcome = await self.runner.run(
                self.binary, ue_args(ue_count), self.workdir, self.timeout, session=identifier
            )

            # Identifiers advance whatever the outcome, so a batch consumes a
            # contiguous range without gaps or repeats.
            self.state.sessions_run += 1
            self.state.identifiers_consumed += ue_count
            if not outcome.success:
                self.state.sessions_failed += 1
            try:
                self.state.current_identifier = next_identifier(identifier, ue_count)
            except InvalidIdentifier:
                self.state.current_identifier = None
                self.state.identifiers_exhausted = True
                if self._sessions_due():
                    await self._abort(f"Identifier range exhausted after {identifier}")
                else:
                    await self.log(f"Identifier range exhausted after {identifier}", LEVEL_WARNING)

        await self._log_outcome(outcome, identifier)
        await self._record_session(index, identifier, ue_count, outcome, started_at)
        await self.publish_status()
        return outcome

    async def _check_range(self, identifier: Optional[str], ue_count: int) -> bool:
        """False (and the run aborted) if ``ue_count`` identifiers no longer fit."""
        if identifier is None:
            await self._abort("Identifier range exhausted")
            return False
        try:
            next_identifier(identifier, ue_count - 1)
        except InvalidIdentifier as e:
            await self._abort(str(e))
            return False
        return True

    def _sessions_due(self) -> bool:
        if self.state.run_mode == RunMode.SCHEDULED.value:
            return bool(self.state.pending_triggers) or self._active_triggers > 1
        return self.state.current_index < self.state.total_count

    async def _abort(self, reason: str):
        await self.log(f"{reason}. No further sessions can run.", LEVEL_ERROR)
        self.state.cancel_requested = True
        self._end_status = "aborted"
        self._cancel_timers()
        self.state.triggers = [t for t in self.state.triggers if t.has_fired]

    async def _log_outcome(self, outcome: RunOutcome, identifier: str):
        if outcome.success:
            await self.log(f"Session {identifier} succeeded", LEVEL_SUCCESS, session=identifier)
        else:
            await self.log(
                f"Session {identifier} failed ({outcome.failure}): {outcome.error.splitlines()[0] if outcome.error else 'no output'}",
                LEVEL_ERROR,
                session=identifier,
            )

    async def _run_batch(self, request: BatchRequest):
        """The immediate-batch loop: one session after another until done or stopped."""
        try:
            for _ in range(request.session_count):
                if self.state.cancel_requested:
                    break
                try:
                    outcome = await self._execute_session(request, request.ues_per_session)
                except ConfigurationError as e:
                    await self.log(f"Configuration error: {e}. Batch aborted.", LEVEL_ERROR)
                    self._end_status = "aborted"
                    break
                if outcome is None:
                    break
                if request.interval_seconds and self.state.current_index < request.session_count:
                    await self._pause(request.interval_seconds)
        except asyncio.CancelledError:
            self._end_status = "cancelled"
            raise
        except Exception as e:
            logger.error(f"Batch loop failed: {e}", exc_info=True)
            self._end_status = "error"
            await self.log(f"Batch failed: {e}", LEVEL_ERROR)
        finally:
            if self.state.cancel_requested and self._end_status == "completed":
                self._end_status = "stopped"
            await self._finish(self._end_status)

    async def _pause(self, seconds: float):
        """Sleep between sessions; returns early when a stop is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _finish(self, status: str):
        if self.state.state == STATE_IDLE:
            return
        self._cancel_timers()
        s = self.state
        self.last_summary = {
            "status": status,
            "sessions_run": s.sessions_run,
            "sessions_failed": s.sessions_failed,
            "identifiers_consumed": s.identifiers_consumed,
            "next_identifier": s.current_identifier,
        }
        s.state = STATE_IDLE
        level = LEVEL_SUCCESS if status == "completed" else LEVEL_WARNING
        await self.log(
            f"Batch {status}: {s.sessions_run} session(s) run, {s.sessions_failed} failed, "
            f"{s.identifiers_consumed} identifier(s) consumed",
            level,
        )
        if self.history and s.batch_id is not None:
            try:
                await self.history.finish_batch(
                    s.batch_id, status, s.sessions_run, s.sessions_failed, s.identifiers_consumed
                )
            except Exception as e:
                logger.warning(f"Could not record batch end: {e}")
        self._idle.set()
        await self.publish_status()

    # ── Scheduled Runs ───────────────────────────────────────────────────────

    async def _start_scheduled(self, request: BatchRequest) -> dict:
        if self.schedule_source is None:
            raise ScheduleError("No flight data source configured")

        entries = await self.schedule_source.fetch()
        now = self._now()
        upcoming, past = split_upcoming(entries, now)
        for entry in past:
            await self.log(
                f"Skipping flight {entry.flight or '?'} at {entry.clock_time:%H:%M:%S}: already passed",
                LEVEL_WARNING,
            )
        if not upcoming:
            raise NoUpcomingFlights("No upcoming flights in the schedule")

        triggers = to_triggers(upcoming)
        self._begin(request, total_count=len(triggers))
        self.state.triggers = triggers
        await self._open_history(request, len(triggers))

        loop = asyncio.get_running_loop()
        for trigger in triggers:
            delay = max(0.0, (trigger.trigger_time - now).total_seconds())
            self._timers.append(loop.call_later(delay, self._fire, trigger))

        first = triggers[0]
        message = (
            f"Scheduled {len(triggers)} session(s) from IMSI {request.imsi}; "
            f"next at {first.trigger_time:%H:%M:%S} ({first.session_size} UE)"
        )
        await self.log(message)
        await self.publish_status()
        return {"success": True, "output": message, "error": ""}

    def _fire(self, trigger: ScheduledTrigger):
        """Timer callback: hand one trigger to the session queue."""
        if self.state.cancel_requested or not self.is_running:
            return
        trigger.has_fired = True
        self._active_triggers += 1
        task = asyncio.create_task(self._run_trigger(trigger))
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_tasks.discard)

    async def _run_trigger(self, trigger: ScheduledTrigger):
        try:
            await self.log(f"Flight {trigger.flight or '?'} arrived: {trigger.session_size} UE")
            await self._execute_session(self._request, trigger.session_size)
        except ConfigurationError as e:
            await self.log(f"Configuration error: {e}. Schedule aborted.", LEVEL_ERROR)
            self._end_status = "aborted"
            self.state.cancel_requested = True
            self._cancel_timers()
        except asyncio.CancelledError:
            self._end_status = "cancelled"
            raise
        except Exception as e:
            logger.error(f"Scheduled session failed: {e}", exc_info=True)
            await self.log(f"Scheduled session failed: {e}", LEVEL_ERROR)
        finally:
            self._active_triggers -= 1
            if self._active_triggers == 0 and (
                self.state.cancel_requested or not self.state.pending_triggers
            ):
                if self.state.cancel_requested and self._end_status == "completed":
                    self._end_status = "stopped"
                await self._finish(self._end_status)

    def _cancel_timers(self):
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

    # ── History ──────────────────────────────────────────────────────────────

    async def _open_history(self, request: BatchRequest, session_count: int):
        if not self.history:
            return
        try:
            self.state.batch_id = await self.history.create_batch(request, session_count)
        except Exception as e:
            logger.warning(f"Could not record batch start: {e}")

    async def _record_session(
        self, index: int, identifier: str, ue_count: int, outcome: RunOutcome, started_at: str
    ):
        if not self.history or self.state.batch_id is None:
            return
        try:
            await self.history.record_session(
                self.state.batch_id, index, identifier, ue_count, outcome, started_at
            )
        except Exception as e:
            logger.warning(f"Could not record session {identifier}: {e}")

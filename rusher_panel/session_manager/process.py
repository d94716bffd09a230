"""Launch the PacketRusher binary and relay its output line by line."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from ..constants import FAILURE_EXIT, FAILURE_LAUNCH, FAILURE_TIMEOUT, LEVEL_ERROR, LEVEL_INFO
from ..models.session import RunOutcome

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

# (line, level, session identifier)
LineSink = Callable[[str, str, Optional[str]], Awaitable[None]]

STREAM_LIMIT = 1024 * 1024


class ProcessRunner:
    """Runs one child process per call and always resolves with a RunOutcome.

    Failures (missing binary, non-zero exit, timeout) come back as values;
    ``run`` does not raise for them.
    """

    def __init__(self, on_line: Optional[LineSink] = None, grace: float = 2.0):
        self._on_line = on_line
        self._grace = grace

    async def run(
        self,
        executable: Path | str,
        args: Sequence[str],
        cwd: Path | str,
        timeout: float,
        session: Optional[str] = None,
    ) -> RunOutcome:
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                str(executable),
                *args,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.error(f"Failed to launch {executable}: {e}")
            return RunOutcome(
                success=False,
                error=f"Failed to launch {executable}: {e}",
                failure=FAILURE_LAUNCH,
                duration=time.monotonic() - started,
            )

        logger.info(f"Started {executable} {' '.join(args)} (pid={proc.pid}, session={session})")
        output: list[str] = []
        errors: list[str] = []
        readers = [
            asyncio.create_task(self._pump(proc.stdout, output, LEVEL_INFO, session)),
            asyncio.create_task(self._pump(proc.stderr, errors, LEVEL_ERROR, session)),
        ]

        timed_out = False
        killed = False
        try:
            await asyncio.wait_for(proc.wait(), timeout)
        except asyncio.TimeoutError:
            timed_out = True
            if proc.returncode is None and not killed:
                killed = True
                self._kill(proc)
            try:
                await asyncio.wait_for(proc.wait(), self._grace)
            except asyncio.TimeoutError:
                logger.error(f"pid={proc.pid} did not exit {self._grace:g}s after SIGKILL")
        except asyncio.CancelledError:
            if proc.returncode is None and not killed:
                killed = True
                self._kill(proc)
            for reader in readers:
                reader.cancel()
            raise

        # Output can outlive the child when a grandchild keeps the pipes open.
        _, pending = await asyncio.wait(readers, timeout=self._grace)
        for reader in pending:
            reader.cancel()

        code = proc.returncode
        stderr_text = "\n".join(errors)
        if timed_out:
            failure = FAILURE_TIMEOUT
            error = f"Timeout after {timeout:g} seconds"
            if stderr_text:
                error = f"{error}\n{stderr_text}"
        elif code != 0:
            failure = FAILURE_EXIT
            error = stderr_text or f"Exit code: {code}"
        else:
            failure = None
            error = stderr_text

        outcome = RunOutcome(
            success=failure is None,
            exit_code=code,
            output="\n".join(output),
            error=error,
            timed_out=timed_out,
            failure=failure,
            duration=time.monotonic() - started,
        )
        logger.info(
            f"pid={proc.pid} finished: exit={code}, timed_out={timed_out}, "
            f"{outcome.duration:.1f}s"
        )
        return outcome

    async def _pump(
        self,
        stream: Optional[asyncio.StreamReader],
        sink: list[str],
        level: str,
        session: Optional[str],
    ):
        """Collect lines as they arrive and forward each one to the line sink."""
        if stream is None:
            return
        try:
            async for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line:
                    continue
                sink.append(line)
                if self._on_line is not None:
                    await self._on_line(line, level, session)
        except ValueError as e:
            logger.warning(f"Dropped oversized output line: {e}")

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process):
        try:
            proc.kill()
            logger.warning(f"Sent SIGKILL to pid={proc.pid}")
        except ProcessLookupError:
            pass

"""Flight arrival feed that sizes and times scheduled sessions."""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, time as clock
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from ..config import FLIGHT_DATA_TIMEOUT
from ..models.schedule import FlightEntry, ScheduledTrigger

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

TIME_KEYS = ("time", "arrival", "clockTime", "clock_time")
SIZE_KEYS = ("ues", "sessionSize", "session_size")
LABEL_KEYS = ("flight", "label")
CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class ScheduleError(RuntimeError):
    """The flight feed could not be fetched or parsed."""


class NoUpcomingFlights(ScheduleError):
    """Every entry in the feed is already in the past."""


def _first(raw: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return None


def parse_clock_time(value: str, now: datetime) -> datetime:
    """Parse ``HH:MM[:SS]`` (today) or an ISO-8601 datetime into naive local time."""
    value = str(value).strip()
    match = CLOCK_RE.match(value)
    if match:
        hour, minute, second = (int(g or 0) for g in match.groups())
        try:
            return datetime.combine(now.date(), clock(hour, minute, second))
        except ValueError as e:
            raise ScheduleError(f"Unrecognised flight time {value!r}") from e
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ScheduleError(f"Unrecognised flight time {value!r}") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_entry(raw: dict, now: datetime) -> FlightEntry:
    if not isinstance(raw, dict):
        raise ScheduleError(f"Flight entry must be an object, got {type(raw).__name__}")
    when = _first(raw, TIME_KEYS)
    if when is None:
        raise ScheduleError(f"Flight entry has no time: {raw}")
    size = _first(raw, SIZE_KEYS)
    try:
        return FlightEntry(
            clock_time=parse_clock_time(when, now),
            session_size=1 if size is None else size,
            flight=str(_first(raw, LABEL_KEYS) or ""),
        )
    except ValidationError as e:
        raise ScheduleError(f"Invalid flight entry {raw}: {e}") from e


def split_upcoming(
    entries: list[FlightEntry], now: datetime
) -> tuple[list[FlightEntry], list[FlightEntry]]:
    """Partition entries into (upcoming, already past)."""
    upcoming = [e for e in entries if e.clock_time > now]
    past = [e for e in entries if e.clock_time <= now]
    return upcoming, past


def to_triggers(entries: list[FlightEntry]) -> list[ScheduledTrigger]:
    return [
        ScheduledTrigger(trigger_time=e.clock_time, session_size=e.session_size, flight=e.flight)
        for e in entries
    ]


class ScheduleSource:
    """Loads flight entries from ``url`` (via httpx) or, failing that, a JSON file."""

    def __init__(
        self,
        url: str = "",
        path: Optional[Path] = None,
        timeout: float = FLIGHT_DATA_TIMEOUT,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.url = url
        self.path = Path(path) if path else None
        self._timeout = timeout
        self._now = now

    async def fetch_raw(self) -> list[dict]:
        if self.url:
            try:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    resp = await client.get(self.url)
                    resp.raise_for_status()
                    data = resp.json()
            except httpx.TimeoutException as e:
                raise ScheduleError(f"Flight feed timed out: {self.url}") from e
            except httpx.HTTPError as e:
                raise ScheduleError(f"Flight feed request failed: {e}") from e
            except json.JSONDecodeError as e:
                raise ScheduleError(f"Flight feed is not JSON: {e}") from e
        elif self.path is not None:
            if not self.path.is_file():
                raise ScheduleError(f"Flight data file not found: {self.path}")
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ScheduleError(f"Could not read {self.path}: {e}") from e
        else:
            raise ScheduleError("No flight data source configured")

        if isinstance(data, dict):
            data = data.get("flights", data.get("arrivals"))
        if not isinstance(data, list):
            raise ScheduleError("Flight feed must be a list of entries")
        return data

    async def fetch(self) -> list[FlightEntry]:
        """Fetch and parse the feed, ordered by clock time."""
        now = self._now()
        raw = await self.fetch_raw()
        entries = sorted((parse_entry(item, now) for item in raw), key=lambda e: e.clock_time)
        logger.info(f"Loaded {len(entries)} flight entries")
        return entries

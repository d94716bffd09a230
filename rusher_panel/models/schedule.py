"""Pydantic models for flight-driven scheduling."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class FlightEntry(BaseModel):
    """One arrival from the schedule feed."""

    clock_time: datetime
    session_size: int = Field(default=1, ge=1)
    flight: str = ""


class ScheduledTrigger(BaseModel):
    """A future session armed from a flight entry."""

    trigger_time: datetime
    session_size: int = 1
    flight: str = ""
    has_fired: bool = False

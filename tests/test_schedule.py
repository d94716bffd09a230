"""Tests for the flight schedule source."""

from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest
from aiohttp import web

from rusher_panel.session_manager.schedule import (
    ScheduleError,
    ScheduleSource,
    parse_clock_time,
    parse_entry,
    split_upcoming,
    to_triggers,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_clock_time_formats() -> None:
    assert parse_clock_time("14:30", NOW) == datetime(2026, 10, 19, 14, 30)
    assert parse_clock_time("09:05:10", NOW) == datetime(2026, 10, 19, 9, 5, 10)
    assert parse_clock_time("2026-10-20T06:15:00", NOW) == datetime(2026, 10, 20, 6, 15)
    aware = parse_clock_time("2026-10-20T06:15:00Z", NOW)
    assert aware.tzinfo is None


def test_unrecognised_time() -> None:
    with pytest.raises(ScheduleError):
        parse_clock_time("soon", NOW)


def test_parse_entry_field_aliases() -> None:
    entry = parse_entry({"arrival": "13:00", "ues": 4, "flight": "BA117"}, NOW)
    assert entry.clock_time == datetime(2026, 10, 19, 13, 0)
    assert entry.session_size == 4
    assert entry.flight == "BA117"

    default = parse_entry({"time": "13:00"}, NOW)
    assert default.session_size == 1


def test_parse_entry_rejects_bad_sizes_and_missing_time() -> None:
    with pytest.raises(ScheduleError):
        parse_entry({"time": "13:00", "sessionSize": 0}, NOW)
    with pytest.raises(ScheduleError):
        parse_entry({"flight": "X1"}, NOW)
    with pytest.raises(ScheduleError):
        parse_entry(["13:00"], NOW)


def test_split_and_trigger_conversion() -> None:
    entries = [
        parse_entry({"time": "11:00", "flight": "past"}, NOW),
        parse_entry({"time": "12:00", "flight": "now"}, NOW),
        parse_entry({"time": "12:30", "ues": 2, "flight": "next"}, NOW),
    ]
    upcoming, past = split_upcoming(entries, NOW)
    assert [e.flight for e in upcoming] == ["next"]
    assert [e.flight for e in past] == ["past", "now"]

    (trigger,) = to_triggers(upcoming)
    assert trigger.session_size == 2
    assert not trigger.has_fired


async def test_file_source_orders_entries(tmp_path) -> None:
    path = tmp_path / "flights.json"
    path.write_text(json.dumps({"flights": [
        {"time": "18:00", "flight": "late"},
        {"time": "08:00", "flight": "early"},
    ]}))

    entries = await ScheduleSource(path=path, now=lambda: NOW).fetch()
    assert [e.flight for e in entries] == ["early", "late"]


async def test_missing_file_and_no_source(tmp_path) -> None:
    with pytest.raises(ScheduleError, match="not found"):
        await ScheduleSource(path=tmp_path / "nope.json").fetch()
    with pytest.raises(ScheduleError, match="No flight data source"):
        await ScheduleSource().fetch()


async def test_url_source_fetches_over_http(aiohttp_server) -> None:
    arrival = (datetime.now() + timedelta(hours=1)).replace(microsecond=0)

    async def flights(request):
        return web.json_response([{"arrival": arrival.isoformat(), "sessionSize": 2, "flight": "AF1"}])

    async def broken(request):
        return web.Response(status=503)

    app = web.Application()
    app.router.add_get("/flights", flights)
    app.router.add_get("/broken", broken)
    server = await aiohttp_server(app)

    entries = await ScheduleSource(url=str(server.make_url("/flights"))).fetch()
    assert len(entries) == 1
    assert entries[0].clock_time == arrival
    assert entries[0].session_size == 2

    with pytest.raises(ScheduleError, match="request failed"):
        await ScheduleSource(url=str(server.make_url("/broken"))).fetch()

"""Tests for the control-panel HTTP surface."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta

import pytest

from rusher_panel.session_manager.manager import SessionManager, create_app
from rusher_panel.session_manager.schedule import ScheduleSource

START_BODY = {
    "countryCode": "001",
    "networkCode": "01",
    "baseIdentifier": "0000000001",
    "sessionCount": 3,
    "runMode": "immediate-batch",
}


@pytest.fixture
def flights_file(tmp_path):
    path = tmp_path / "flights.json"
    now = datetime.now()
    path.write_text(json.dumps([
        {"time": (now - timedelta(hours=1)).isoformat(), "flight": "OLD1"},
        {"time": (now + timedelta(hours=1)).isoformat(), "ues": 2, "flight": "NEW1"},
    ]))
    return path


@pytest.fixture
def manager(config_file, runner, tmp_path, flights_file) -> SessionManager:
    return SessionManager(
        config_path=config_file,
        binary=tmp_path / "packetrusher",
        workdir=tmp_path,
        timeout=5,
        db_path=tmp_path / "history.db",
        schedule_source=ScheduleSource(path=flights_file),
        runner=runner,
    )


@pytest.fixture
async def client(aiohttp_client, manager):
    return await aiohttp_client(create_app(manager))


async def test_health_and_index(client) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "ok"
    assert "timestamp" in data

    resp = await client.get("/")
    assert resp.status == 200
    assert "PacketRusher Controller" in await resp.text()


async def test_start_runs_batch_and_records_history(client, manager, runner) -> None:
    resp = await client.post("/api/sessions/start", json=START_BODY)
    assert resp.status == 200
    assert (await resp.json())["success"] is True

    await asyncio.wait_for(manager.orchestrator.wait_idle(), timeout=5)
    assert runner.sessions == ["0000000001", "0000000002", "0000000003"]

    resp = await client.get("/api/sessions/history")
    history = await resp.json()
    assert history["count"] == 1
    batch = history["batches"][0]
    assert batch["status"] == "completed"
    assert batch["sessions_run"] == 3

    resp = await client.get(f"/api/sessions/history/{batch['id']}")
    detail = (await resp.json())["batch"]
    assert [s["identifier"] for s in detail["sessions"]] == runner.sessions
    assert all(s["success"] for s in detail["sessions"])


async def test_start_accepts_form_bodies(client, manager, runner) -> None:
    form = {**START_BODY, "sessionCount": "2"}
    resp = await client.post("/api/sessions/start", data=form)
    assert resp.status == 200

    await asyncio.wait_for(manager.orchestrator.wait_idle(), timeout=5)
    assert runner.sessions == ["0000000001", "0000000002"]


@pytest.mark.parametrize("override", [
    {"sessionCount": 0},
    {"baseIdentifier": "abcdefghij"},
    {"baseIdentifier": "123"},
    {"countryCode": "1"},
    {"runMode": "parallel"},
    {"intervalSeconds": -5},
])
async def test_start_rejects_invalid_requests(client, runner, override) -> None:
    resp = await client.post("/api/sessions/start", json={**START_BODY, **override})
    assert resp.status == 400
    data = await resp.json()
    assert data["success"] is False
    assert data["error"].startswith("Invalid params")
    assert runner.calls == []


async def test_start_rejects_malformed_json(client) -> None:
    resp = await client.post(
        "/api/sessions/start", data="{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status == 400


async def test_second_start_conflicts_and_stop_ends_run(client, manager, runner) -> None:
    runner.delay = 0.2
    resp = await client.post("/api/sessions/start", json={**START_BODY, "sessionCount": 5})
    assert resp.status == 200

    resp = await client.post("/api/sessions/start", json=START_BODY)
    assert resp.status == 409

    resp = await client.post("/api/sessions/stop")
    assert (await resp.json())["success"] is True

    await asyncio.wait_for(manager.orchestrator.wait_idle(), timeout=5)
    status = await (await client.get("/api/sessions/status")).json()
    assert status["state"] == "idle"
    assert status["sessions_run"] < 5
    assert manager.orchestrator.last_summary["status"] == "stopped"


async def test_legacy_run_endpoint(client, runner, config_file) -> None:
    resp = await client.post("/run", json={"imsi": "001010000000042"})
    assert resp.status == 200
    data = await resp.json()
    assert data["success"] is True
    assert runner.sessions == ["0000000042"]
    assert runner.calls[0]["staged"] == "0000000042"

    resp = await client.post("/run", json={"imsi": "12345"})
    assert resp.status == 400
    assert "Invalid IMSI" in (await resp.json())["error"]


async def test_legacy_run_reports_configuration_error(client, manager, tmp_path) -> None:
    manager.patcher.config_path = tmp_path / "gone.yml"
    resp = await client.post("/run", json={"imsi": "001010000000042"})
    assert resp.status == 500
    assert "Config not found" in (await resp.json())["error"]


async def test_clear_logs(client, manager) -> None:
    await client.post("/run", json={"imsi": "001010000000042"})
    status = await (await client.get("/api/sessions/status")).json()
    assert status["session_log"]

    resp = await client.post("/api/logs/clear")
    assert (await resp.json())["success"] is True
    status = await (await client.get("/api/sessions/status")).json()
    assert status["session_log"] == []
    assert status["process_log"] == []


async def test_websocket_snapshot_then_live_events(client, manager, runner) -> None:
    runner.lines = ["Registration accept"]
    runner.sink = manager.orchestrator.record_process_line

    ws = await client.ws_connect("/ws")
    first = await ws.receive_json(timeout=5)
    assert first["type"] == "snapshot"
    assert first["status"]["state"] == "idle"

    await client.post("/api/sessions/start", json={**START_BODY, "sessionCount": 1})
    await asyncio.wait_for(manager.orchestrator.wait_idle(), timeout=5)

    seen = []
    while True:
        try:
            seen.append(await ws.receive_json(timeout=0.5))
        except (asyncio.TimeoutError, TypeError):
            break
    await ws.close()

    types = {e["type"] for e in seen}
    assert {"session-log", "packetrusher-log", "status"} <= types
    process_lines = [e for e in seen if e["type"] == "packetrusher-log"]
    assert process_lines[0]["message"] == "Registration accept"
    assert process_lines[0]["level"] == "info"
    assert "timestamp" in process_lines[0]


async def test_flight_data_endpoints(client) -> None:
    data = await (await client.get("/api/flight-data")).json()
    assert data["upcoming"] == 1
    assert data["past"] == 1
    assert data["flights"][0]["flight"] == "NEW1"
    assert data["next_trigger"] is None

    raw = await (await client.get("/api/flight-data-json")).json()
    assert [f["flight"] for f in raw] == ["OLD1", "NEW1"]


async def test_scheduled_start_arms_triggers(client, manager, runner) -> None:
    resp = await client.post("/api/sessions/start", json={**START_BODY, "runMode": "scheduled-batch"})
    assert resp.status == 200

    status = await (await client.get("/api/sessions/status")).json()
    assert status["state"] == "running"
    assert status["total_count"] == 1
    assert status["next_trigger"]["flight"] == "NEW1"

    await client.post("/api/sessions/stop")
    status = await (await client.get("/api/sessions/status")).json()
    assert status["state"] == "idle"
    assert status["pending_triggers"] == []
    assert runner.calls == []


async def test_history_detail_not_found(client) -> None:
    resp = await client.get("/api/sessions/history/999")
    assert resp.status == 404

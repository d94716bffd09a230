"""Control-panel HTTP service.

Serves the control page, accepts batch start/stop requests, and pushes
live PacketRusher output to browsers over a WebSocket.

Endpoints:
    GET  /                              - Control panel page
    GET  /ws                            - Live log channel (WebSocket)
    POST /run                           - Run one session for a full IMSI and wait
    POST /api/sessions/start            - Start a batch (JSON or form body)
    POST /api/sessions/stop             - Stop the active batch
    GET  /api/sessions/status           - Run state snapshot
    GET  /api/sessions/history          - Recent batches
    GET  /api/sessions/history/{id}     - One batch with its sessions
    POST /api/logs/clear                - Empty both log buffers
    GET  /api/flight-data               - Upcoming flights + next trigger
    GET  /api/flight-data-json          - Parsed flight feed
    GET  /health                        - Liveness
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import aiosqlite
from aiohttp import WSMsgType, web
from pydantic import ValidationError

from ..config import (
    DB_PATH,
    FLIGHT_DATA_FILE,
    FLIGHT_DATA_URL,
    PACKETRUSHER_BINARY,
    PACKETRUSHER_CONFIG,
    PACKETRUSHER_DIR,
    SESSION_TIMEOUT,
    ensure_dirs,
)
from ..constants import EVENT_SNAPSHOT, LEVEL_ERROR
from ..database.models import initialize_db
from ..database.repository import RunHistoryRepository
from ..models.batch import BatchRequest, RunRequest
from .orchestrator import BatchInProgress, SessionOrchestrator
from .patcher import ConfigPatcher, ConfigurationError
from .relay import LogRelay
from .schedule import NoUpcomingFlights, ScheduleError, ScheduleSource, split_upcoming
from .state import RunState

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

STATIC_DIR = Path(__file__).parent.parent / "static"


class SessionManager:
    """Owns the run state, the live relay, the orchestrator and the history db."""

    def __init__(
        self,
        config_path: Path = PACKETRUSHER_CONFIG,
        binary: Path = PACKETRUSHER_BINARY,
        workdir: Path = PACKETRUSHER_DIR,
        timeout: float = SESSION_TIMEOUT,
        db_path: Optional[Path] = DB_PATH,
        schedule_source: Optional[ScheduleSource] = None,
        runner: Optional[Any] = None,
    ):
        self.state = RunState()
        self.relay = LogRelay()
        self.patcher = ConfigPatcher(config_path)
        self.schedule_source = schedule_source or ScheduleSource(
            url=FLIGHT_DATA_URL, path=FLIGHT_DATA_FILE
        )
        self.orchestrator = SessionOrchestrator(
            self.state,
            self.patcher,
            self.relay,
            runner=runner,
            binary=binary,
            workdir=workdir,
            timeout=timeout,
            schedule_source=self.schedule_source,
        )
        self._db_path = db_path
        self.db: aiosqlite.Connection | None = None
        self.repo: RunHistoryRepository | None = None

    async def setup(self):
        """Open the run-history database."""
        if self._db_path is None:
            return
        if self._db_path == DB_PATH:
            ensure_dirs()
        else:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db = await aiosqlite.connect(str(self._db_path))
        self.db.row_factory = aiosqlite.Row
        await initialize_db(self.db)
        self.repo = RunHistoryRepository(self.db)
        self.orchestrator.history = self.repo

    async def cleanup(self):
        """Clean up resources."""
        await self.orchestrator.shutdown()
        await self.relay.close_all()
        if self.db:
            await self.db.close()


# ── Helpers ──────────────────────────────────────────────────────────────────


async def _read_body(request: web.Request) -> dict:
    """Body as a dict, from JSON or an HTML form."""
    if request.content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        return dict(await request.post())
    if not request.can_read_body:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        field = ".".join(str(p) for p in err["loc"]) or "request"
        parts.append(f"{field}: {err['msg']}")
    return "; ".join(parts)


def _fail(error: str, status: int) -> web.Response:
    return web.json_response({"success": False, "output": "", "error": error}, status=status)


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_index(request: web.Request) -> web.StreamResponse:
    return web.FileResponse(STATIC_DIR / "index.html")


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "timestamp": datetime.now().isoformat()})


async def handle_run(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        body = await _read_body(request)
        run = RunRequest(**body)
    except ValidationError as e:
        return _fail(f"Invalid IMSI: {_validation_message(e)}", 400)
    except ValueError as e:
        return _fail(f"Invalid params: {e}", 400)

    try:
        outcome = await mgr.orchestrator.run_single(run.to_batch())
    except BatchInProgress as e:
        return _fail(str(e), 409)
    except ConfigurationError as e:
        await mgr.orchestrator.log(str(e), LEVEL_ERROR)
        return _fail(str(e), 500)
    except Exception as e:
        logger.error(f"Single run failed: {e}", exc_info=True)
        return _fail(str(e), 500)

    return web.json_response(outcome.model_dump())


async def handle_start(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        body = await _read_body(request)
        batch = BatchRequest.model_validate(body)
    except ValidationError as e:
        return _fail(f"Invalid params: {_validation_message(e)}", 400)
    except ValueError as e:
        return _fail(f"Invalid params: {e}", 400)

    try:
        result = await mgr.orchestrator.start(batch)
    except BatchInProgress as e:
        return _fail(str(e), 409)
    except NoUpcomingFlights as e:
        return _fail(str(e), 422)
    except ScheduleError as e:
        logger.error(f"Flight schedule unavailable: {e}")
        return _fail(str(e), 502)
    except Exception as e:
        logger.error(f"Batch start failed: {e}", exc_info=True)
        return _fail(str(e), 500)

    return web.json_response(result)


async def handle_stop(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    result = await mgr.orchestrator.stop()
    return web.json_response(result)


async def handle_status(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    return web.json_response(mgr.state.snapshot().model_dump(mode="json"))


async def handle_clear_logs(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    mgr.orchestrator.clear_logs()
    return web.json_response({"success": True, "output": "Logs cleared.", "error": ""})


async def handle_history(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        limit = int(request.query.get("limit", "20"))
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)

    batches = await mgr.repo.list_batches(limit=max(1, limit)) if mgr.repo else []
    return web.json_response({"batches": batches, "count": len(batches)})


async def handle_history_detail(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        batch_id = int(request.match_info["batch_id"])
    except ValueError:
        return web.json_response({"error": "batch id must be an integer"}, status=400)

    batch = await mgr.repo.get_batch(batch_id) if mgr.repo else None
    if batch is None:
        return web.json_response({"error": f"Batch {batch_id} not found"}, status=404)
    return web.json_response({"batch": batch})


async def handle_flight_data(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        entries = await mgr.schedule_source.fetch()
    except ScheduleError as e:
        return web.json_response({"error": str(e)}, status=502)

    upcoming, past = split_upcoming(entries, datetime.now())
    next_trigger = mgr.state.snapshot(include_logs=False).next_trigger
    return web.json_response({
        "flights": [e.model_dump(mode="json") for e in upcoming],
        "upcoming": len(upcoming),
        "past": len(past),
        "next_trigger": next_trigger.model_dump(mode="json") if next_trigger else None,
    })


async def handle_flight_data_json(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        entries = await mgr.schedule_source.fetch()
    except ScheduleError as e:
        return web.json_response({"error": str(e)}, status=502)
    return web.json_response([e.model_dump(mode="json") for e in entries])


async def handle_ws(request: web.Request) -> web.WebSocketResponse:
    mgr: SessionManager = request.app["manager"]
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)

    mgr.relay.add(ws)
    try:
        snapshot = mgr.state.snapshot().model_dump(mode="json")
        await mgr.relay.send(ws, {"type": EVENT_SNAPSHOT, "status": snapshot})
        async for msg in ws:
            if msg.type == WSMsgType.TEXT and msg.data == "ping":
                await ws.send_str("pong")
            elif msg.type == WSMsgType.ERROR:
                logger.warning(f"WebSocket closed with error: {ws.exception()}")
    finally:
        mgr.relay.remove(ws)
    return ws


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    mgr: SessionManager = app["manager"]
    await mgr.setup()
    logger.info("Control panel service started.")


async def on_cleanup(app: web.Application):
    mgr: SessionManager = app["manager"]
    await mgr.cleanup()
    logger.info("Control panel service stopped.")


def create_app(manager: Optional[SessionManager] = None) -> web.Application:
    app = web.Application()
    app["manager"] = manager or SessionManager()
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/", handle_index)
    app.router.add_get("/ws", handle_ws)
    app.router.add_get("/health", handle_health)
    app.router.add_post("/run", handle_run)
    app.router.add_post("/api/sessions/start", handle_start)
    app.router.add_post("/api/sessions/stop", handle_stop)
    app.router.add_get("/api/sessions/status", handle_status)
    app.router.add_get("/api/sessions/history", handle_history)
    app.router.add_get("/api/sessions/history/{batch_id}", handle_history_detail)
    app.router.add_post("/api/logs/clear", handle_clear_logs)
    app.router.add_get("/api/flight-data", handle_flight_data)
    app.router.add_get("/api/flight-data-json", handle_flight_data_json)
    app.router.add_static("/static", STATIC_DIR)

    return app

"""Shared fixtures: a sample PacketRusher config and a scripted process runner."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import yaml

from rusher_panel.models.session import RunOutcome
from rusher_panel.session_manager.orchestrator import SessionOrchestrator
from rusher_panel.session_manager.patcher import ConfigPatcher
from rusher_panel.session_manager.relay import LogRelay
from rusher_panel.session_manager.state import RunState

SAMPLE_CONFIG = {
    "gnodeb": {
        "controlif": {"ip": "192.168.11.13", "port": 9487},
        "plmnlist": {"mcc": "999", "mnc": "70", "tac": "000001", "gnbid": "000008"},
    },
    "ue": {
        "msin": "0000000120",
        "key": "00112233445566778899AABBCCDDEEFF",
        "opc": "00112233445566778899AABBCCDDEEFF",
        "dnn": "internet",
        "hplmn": {"mcc": "999", "mnc": "70"},
    },
    "amfif": [{"ip": "192.168.11.30", "port": 38412}],
}


class FakeRunner:
    """Stands in for ProcessRunner; records each call and the msin staged at that moment."""

    def __init__(self, outcomes=None, delay: float = 0.0, config_path: Path | None = None, lines=None):
        self.calls: list[dict] = []
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.config_path = config_path
        self.lines = list(lines or [])
        self.sink = None
        self.on_run = None
        self.active = 0
        self.max_active = 0

    async def run(self, executable, args, cwd, timeout, session=None) -> RunOutcome:
        staged = None
        if self.config_path is not None:
            staged = yaml.safe_load(Path(self.config_path).read_text())["ue"]["msin"]
        self.calls.append({"args": list(args), "session": session, "staged": staged, "cwd": cwd})

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_run is not None:
                await self.on_run(len(self.calls))
            for line in self.lines:
                if self.sink is not None:
                    await self.sink(line, "info", session)
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        if self.outcomes:
            return self.outcomes.pop(0)
        return RunOutcome(success=True, exit_code=0, output="ok")

    @property
    def sessions(self) -> list[str]:
        return [c["session"] for c in self.calls]


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(SAMPLE_CONFIG, sort_keys=False))
    return path


@pytest.fixture
def runner(config_file) -> FakeRunner:
    return FakeRunner(config_path=config_file)


@pytest.fixture
def make_orchestrator(config_file, runner, tmp_path):
    def _make(**kwargs) -> SessionOrchestrator:
        kwargs.setdefault("runner", runner)
        patcher = ConfigPatcher(kwargs.pop("config_path", config_file))
        return SessionOrchestrator(
            RunState(),
            patcher,
            LogRelay(),
            binary=tmp_path / "packetrusher",
            workdir=tmp_path,
            timeout=5,
            **kwargs,
        )

    return _make

"""Tests for live event fan-out."""

from __future__ import annotations

from rusher_panel.session_manager.relay import LogRelay


class FakeSocket:
    def __init__(self, closed: bool = False, fail: bool = False):
        self.closed = closed
        self.fail = fail
        self.sent: list[dict] = []

    async def send_json(self, data):
        if self.fail:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self):
        self.closed = True


async def test_broadcast_reaches_every_open_observer() -> None:
    relay = LogRelay()
    a, b = FakeSocket(), FakeSocket()
    relay.add(a)
    relay.add(b)

    delivered = await relay.broadcast({"type": "session-log", "message": "hello"})

    assert delivered == 2
    assert a.sent == b.sent == [{"type": "session-log", "message": "hello"}]


async def test_closed_and_failing_observers_are_skipped_and_dropped() -> None:
    relay = LogRelay()
    good, closed, broken = FakeSocket(), FakeSocket(closed=True), FakeSocket(fail=True)
    for ws in (good, closed, broken):
        relay.add(ws)

    assert await relay.broadcast({"n": 1}) == 1
    assert relay.observer_count == 1
    assert await relay.broadcast({"n": 2}) == 1
    assert good.sent == [{"n": 1}, {"n": 2}]


async def test_late_observer_gets_only_future_events() -> None:
    relay = LogRelay()
    early = FakeSocket()
    relay.add(early)
    await relay.broadcast({"n": 1})

    late = FakeSocket()
    relay.add(late)
    await relay.broadcast({"n": 2})

    assert late.sent == [{"n": 2}]
    relay.remove(late)
    await relay.close_all()
    assert early.closed
    assert relay.observer_count == 0

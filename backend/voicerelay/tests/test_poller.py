"""Tests for the fixed-interval poll loop."""

import asyncio

import pytest

from voicerelay.client.poller import PollSynchronizer
from voicerelay.core.errors import SignalingTransportError
from voicerelay.schemas.voice import VoiceSessionState


class Recorder:
    def __init__(self):
        self.snapshots: list = []
        self.errors: list[Exception] = []
        self.recoveries = 0

    async def reconcile(self, state):
        self.snapshots.append(state)

    def on_error(self, exc):
        self.errors.append(exc)

    def on_recover(self):
        self.recoveries += 1


def _poller(fetch, recorder: Recorder, interval_ms: int = 10) -> PollSynchronizer:
    return PollSynchronizer(
        "r1",
        fetch,
        recorder.reconcile,
        interval_ms,
        on_error=recorder.on_error,
        on_recover=recorder.on_recover,
    )


@pytest.mark.asyncio
async def test_tick_feeds_snapshot_to_reconcile():
    recorder = Recorder()
    snapshot = VoiceSessionState(offer="sdp-A")

    async def fetch(room_id):
        assert room_id == "r1"
        return snapshot

    poller = _poller(fetch, recorder)
    assert await poller.tick() is True
    assert recorder.snapshots == [snapshot]
    assert poller.ticks == 1


@pytest.mark.asyncio
async def test_transport_error_is_reported_not_raised():
    recorder = Recorder()

    async def fetch(room_id):
        raise SignalingTransportError("getVoiceSessionState", "timeout")

    poller = _poller(fetch, recorder)
    assert await poller.tick() is False
    assert len(recorder.errors) == 1
    assert recorder.snapshots == []


@pytest.mark.asyncio
async def test_reconcile_error_is_reported_not_raised():
    recorder = Recorder()

    async def fetch(room_id):
        return None

    async def broken_reconcile(state):
        raise RuntimeError("boom")

    poller = PollSynchronizer("r1", fetch, broken_reconcile, 10, on_error=recorder.on_error)
    assert await poller.tick() is False
    assert isinstance(recorder.errors[0], RuntimeError)


@pytest.mark.asyncio
async def test_recovery_is_reported_once_after_failures():
    recorder = Recorder()
    results = [SignalingTransportError("getVoiceSessionState", "down"), None, None]

    async def fetch(room_id):
        item = results.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    poller = _poller(fetch, recorder)
    await poller.tick()
    await poller.tick()
    await poller.tick()
    assert len(recorder.errors) == 1
    assert recorder.recoveries == 1


@pytest.mark.asyncio
async def test_loop_keeps_running_through_errors_until_stopped():
    recorder = Recorder()
    calls = 0

    async def fetch(room_id):
        nonlocal calls
        calls += 1
        if calls % 2:
            raise SignalingTransportError("getVoiceSessionState", "flaky")
        return None

    poller = _poller(fetch, recorder, interval_ms=1)
    poller.start()
    assert poller.running
    for _ in range(200):
        if calls >= 4:
            break
        await asyncio.sleep(0.005)
    await poller.stop()
    assert not poller.running
    assert calls >= 4
    assert recorder.errors
    assert recorder.snapshots

    seen = calls
    await asyncio.sleep(0.02)
    assert calls == seen


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task():
    recorder = Recorder()

    async def fetch(room_id):
        return None

    poller = _poller(fetch, recorder, interval_ms=1000)
    poller.start()
    task = poller._task
    poller.start()
    assert poller._task is task
    await poller.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    recorder = Recorder()

    async def fetch(room_id):
        return None

    await _poller(fetch, recorder).stop()


def test_interval_must_be_positive():
    async def fetch(room_id):
        return None

    with pytest.raises(ValueError):
        PollSynchronizer("r1", fetch, fetch, 0)


@pytest.mark.asyncio
async def test_stop_waits_for_a_manual_tick_and_disables_later_ones():
    recorder = Recorder()
    gate = asyncio.Event()

    async def fetch(room_id):
        await gate.wait()
        return None

    poller = _poller(fetch, recorder, interval_ms=60_000)
    tick = asyncio.create_task(poller.tick())
    await asyncio.sleep(0)
    stop = asyncio.create_task(poller.stop())
    await asyncio.sleep(0)
    assert not stop.done()

    gate.set()
    assert await tick is True
    await stop
    assert await poller.tick() is False
    assert recorder.snapshots == [None]

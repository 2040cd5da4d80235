import asyncio

import pytest

from medreminder.reminders.lifecycle import LifecycleMonitor
from tests.conftest import settle


class ResyncRecorder:
    def __init__(self):
        self.reasons = []

    async def __call__(self, reason: str) -> int:
        self.reasons.append(reason)
        return 1


@pytest.fixture
def resync():
    return ResyncRecorder()


@pytest.fixture
def monitor(resync, clock):
    return LifecycleMonitor(
        resync,
        resume_threshold=120,
        focus_debounce=1,
        watchdog_interval=30,
        clock=clock.timestamp,
        sleep=clock.sleep,
    )


@pytest.mark.asyncio
async def test_short_hide_does_not_resync(monitor, resync, clock):
    monitor.on_hidden()
    assert monitor.hidden
    await clock.advance(60)
    assert await monitor.on_visible() is False
    assert resync.reasons == []
    assert not monitor.hidden


@pytest.mark.asyncio
async def test_long_hide_resyncs_on_resume(monitor, resync, clock):
    monitor.on_hidden()
    await clock.advance(121)
    assert await monitor.on_visible() is True
    assert resync.reasons == ["resume"]


@pytest.mark.asyncio
async def test_visible_without_hidden_is_noop(monitor, resync):
    assert await monitor.on_visible() is False
    assert resync.reasons == []


@pytest.mark.asyncio
async def test_repeated_hidden_keeps_first_timestamp(monitor, resync, clock):
    monitor.on_hidden()
    await clock.advance(100)
    monitor.on_hidden()
    await clock.advance(30)
    assert await monitor.on_visible() is True


@pytest.mark.asyncio
async def test_focus_is_debounced(monitor, resync, clock):
    monitor.on_focus()
    await clock.advance(0.5)
    monitor.on_focus()
    await clock.advance(0.5)
    monitor.on_focus()
    assert resync.reasons == []
    await clock.advance(1)
    assert resync.reasons == ["focus"]


@pytest.mark.asyncio
async def test_watchdog_detects_suspend(monitor, resync, clock):
    monitor.start_watchdog()
    await settle()
    await clock.advance(30)
    assert resync.reasons == []

    # Host slept: wall clock jumps without the watchdog ticking
    clock.now = clock.now.replace(hour=clock.now.hour + 1)
    await clock.advance(0)
    assert resync.reasons == ["sleep"]
    await monitor.stop()


@pytest.mark.asyncio
async def test_stop_cancels_background_tasks(monitor, clock):
    watchdog = monitor.start_watchdog()
    focus = monitor.on_focus()
    await settle()
    await monitor.stop()
    assert watchdog.cancelled()
    assert focus.cancelled()
    assert isinstance(watchdog, asyncio.Task)

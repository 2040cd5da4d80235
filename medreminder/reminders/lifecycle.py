"""
Resynchronises local timers after the process (or the client driving it) was
hidden, suspended or refocused. In-process timers cannot be trusted across a
suspend boundary, so every such transition triggers cancel-then-recreate.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from medreminder.core.config import settings

logger = logging.getLogger(__name__)

Resync = Callable[[str], Awaitable[int]]


class LifecycleMonitor:
    def __init__(
        self,
        resync: Resync,
        resume_threshold: float = None,
        focus_debounce: float = None,
        watchdog_interval: float = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._resync = resync
        self.resume_threshold = settings.RESUME_THRESHOLD_SECONDS if resume_threshold is None else resume_threshold
        self.focus_debounce = settings.FOCUS_DEBOUNCE_SECONDS if focus_debounce is None else focus_debounce
        self.watchdog_interval = settings.WATCHDOG_INTERVAL_SECONDS if watchdog_interval is None else watchdog_interval
        # Wall clock on purpose: monotonic clocks stop while the host is suspended
        self._clock = clock
        self._sleep = sleep
        self._hidden_since: Optional[float] = None
        self._pending_focus: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None

    @property
    def hidden(self) -> bool:
        return self._hidden_since is not None

    def on_hidden(self) -> None:
        if self._hidden_since is None:
            self._hidden_since = self._clock()
            logger.info("[Lifecycle] Hidden - local timers may be suspended")

    async def on_visible(self) -> bool:
        """Resynchronise when the hidden period reached the resume threshold."""
        hidden_since, self._hidden_since = self._hidden_since, None
        if hidden_since is None:
            return False
        hidden_for = self._clock() - hidden_since
        if hidden_for < self.resume_threshold:
            logger.info(f"[Lifecycle] Visible after {hidden_for:.0f}s - no resync needed")
            return False
        logger.info(f"[Lifecycle] Visible after {hidden_for:.0f}s - resynchronizing reminders")
        await self._resync("resume")
        return True

    def on_focus(self) -> asyncio.Task:
        """Debounced resync; a new focus event restarts the debounce window."""
        if self._pending_focus and not self._pending_focus.done():
            self._pending_focus.cancel()
        self._pending_focus = asyncio.get_running_loop().create_task(self._debounced_focus_resync())
        return self._pending_focus

    async def _debounced_focus_resync(self) -> None:
        await self._sleep(self.focus_debounce)
        logger.info("[Lifecycle] Focus regained - checking for missed reminders")
        try:
            await self._resync("focus")
        except Exception:
            logger.exception("[Lifecycle] Focus resync failed")

    def start_watchdog(self) -> asyncio.Task:
        if self._watchdog is None or self._watchdog.done():
            self._watchdog = asyncio.get_running_loop().create_task(self.run_sleep_watchdog())
        return self._watchdog

    async def run_sleep_watchdog(self) -> None:
        """Detect host suspend: the wall clock jumps further than one tick plus the threshold."""
        last = self._clock()
        while True:
            await self._sleep(self.watchdog_interval)
            now = self._clock()
            gap = now - last - self.watchdog_interval
            last = now
            if gap >= self.resume_threshold:
                logger.warning(f"[Lifecycle] Wall clock jumped {gap:.0f}s - host likely resumed from sleep")
                try:
                    await self._resync("sleep")
                except Exception:
                    logger.exception("[Lifecycle] Resume resync failed")

    async def stop(self) -> None:
        tasks = [t for t in (self._pending_focus, self._watchdog) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

"""
In-process daily reminder timers.

One asyncio task per (medication, slot). Each task loops
``scheduled -> fired -> scheduled`` until its handle is cancelled; the
handle table is owned by a single ``LocalScheduler`` instance and only
changes through ``schedule_*`` / ``cancel_*``.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from medreminder.utils.timezone import now_local

from .dispatcher import NotificationDispatcher
from .metrics import reminder_active_slots, reminder_slots_fired_total, reminders_cancelled_total
from .schemas import DispatchReport, Medication, ReminderFired, UserContactInfo
from .timespec import TimeSpec, filter_valid

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, int]
FiredHook = Callable[[ReminderFired, DispatchReport], Awaitable[None]]


def next_fire_time(time: TimeSpec, now: datetime) -> datetime:
    """Today at ``time``, or tomorrow if that is not strictly in the future."""
    candidate = now.replace(hour=time.hour, minute=time.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class SlotState(str, Enum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    CANCELLED = "cancelled"


@dataclass
class LocalTimerHandle:
    medication_id: str
    slot_index: int
    time: TimeSpec
    fire_at: datetime
    state: SlotState = SlotState.SCHEDULED
    fired_count: int = 0
    cancelled: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def key(self) -> SlotKey:
        return (self.medication_id, self.slot_index)

    def cancel(self) -> bool:
        """Flip the token first so a fire already past its sleep becomes a no-op."""
        if self.cancelled:
            return False
        self.cancelled = True
        self.state = SlotState.CANCELLED
        if self.task is not None and not self.task.done():
            self.task.cancel()
        return True


class LocalScheduler:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = now_local,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_fired: Optional[FiredHook] = None,
    ):
        self._dispatcher = dispatcher
        self._clock = clock
        self._sleep = sleep
        self.on_fired = on_fired
        self._handles: Dict[SlotKey, LocalTimerHandle] = {}
        self._deliveries: Set[asyncio.Task] = set()

    # -- scheduling -------------------------------------------------------

    def schedule_medication(self, medication: Medication, recipient: UserContactInfo) -> List[LocalTimerHandle]:
        """Cancel every slot of the medication, then arm one slot per valid time."""
        self.cancel_all(medication.id)
        if not medication.is_active:
            return []
        times = filter_valid(medication.reminder_times).times
        handles = [self.schedule_slot(medication, index, t, recipient) for index, t in enumerate(times)]
        if handles:
            nearest = min(h.fire_at for h in handles)
            logger.info(
                f"[Scheduler] {medication.name} ({medication.id}): {len(handles)} slot(s), "
                f"next at {nearest.isoformat()}"
            )
        return handles

    def schedule_slot(
        self,
        medication: Medication,
        slot_index: int,
        time: TimeSpec,
        recipient: UserContactInfo,
    ) -> LocalTimerHandle:
        key = (medication.id, slot_index)
        previous = self._handles.pop(key, None)
        if previous is not None and previous.cancel():
            reminders_cancelled_total.inc()

        handle = LocalTimerHandle(
            medication_id=medication.id,
            slot_index=slot_index,
            time=time,
            fire_at=next_fire_time(time, self._clock()),
        )
        handle.task = asyncio.get_running_loop().create_task(
            self._run_slot(handle, medication, recipient),
            name=f"reminder:{medication.id}:{slot_index}",
        )
        self._handles[key] = handle
        reminder_active_slots.set(len(self._handles))
        return handle

    async def _run_slot(self, handle: LocalTimerHandle, medication: Medication, recipient: UserContactInfo) -> None:
        while not handle.cancelled:
            await self._sleep_until(handle.fire_at)
            if handle.cancelled:
                return
            fired_at = handle.fire_at
            handle.state = SlotState.FIRED
            handle.fired_count += 1
            reminder_slots_fired_total.inc()
            logger.info(f"[Scheduler] Firing {medication.name} slot {handle.slot_index} ({handle.time}) at {fired_at.isoformat()}")
            self._deliver_in_background(medication, handle.time, fired_at, recipient)
            # Re-arm from the later of the slot time and now, so a long suspend
            # yields one late fire instead of one per missed day
            handle.fire_at = next_fire_time(handle.time, max(fired_at, self._clock()))
            handle.state = SlotState.SCHEDULED

    async def _sleep_until(self, when: datetime) -> None:
        # Compare POSIX timestamps so DST transitions do not skew the delay
        while True:
            remaining = when.timestamp() - self._clock().timestamp()
            if remaining <= 0:
                return
            await self._sleep(remaining)

    def _deliver_in_background(self, medication: Medication, time: TimeSpec, fired_at: datetime,
                               recipient: UserContactInfo) -> None:
        event = ReminderFired(
            medication_id=medication.id,
            medication_name=medication.name,
            dosage=medication.dosage,
            time=str(time),
            instructions=medication.notes,
            fired_at=fired_at,
        )
        task = asyncio.get_running_loop().create_task(self._deliver(medication.user_id, event, recipient))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, user_id: str, event: ReminderFired, recipient: UserContactInfo) -> None:
        try:
            report = await self._dispatcher.dispatch(user_id, event, recipient)
            if self.on_fired is not None:
                await self.on_fired(event, report)
        except Exception:
            logger.exception(f"[Scheduler] Delivery of {event.medication_id}@{event.time} failed")

    # -- cancellation -----------------------------------------------------

    def cancel_all(self, medication_id: str) -> int:
        """Cancel every slot of one medication, each exactly once."""
        keys = [key for key in self._handles if key[0] == medication_id]
        cancelled = 0
        for key in keys:
            if self._handles.pop(key).cancel():
                cancelled += 1
        if cancelled:
            reminders_cancelled_total.inc(cancelled)
            logger.info(f"[Scheduler] Cancelled {cancelled} slot(s) for medication {medication_id}")
        reminder_active_slots.set(len(self._handles))
        return cancelled

    def cancel_everything(self) -> int:
        medication_ids = {key[0] for key in self._handles}
        return sum(self.cancel_all(medication_id) for medication_id in medication_ids)

    async def shutdown(self) -> None:
        tasks = [h.task for h in self._handles.values() if h.task is not None]
        self.cancel_everything()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.wait_for_deliveries()

    async def wait_for_deliveries(self) -> None:
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    # -- inspection -------------------------------------------------------

    def active_handles(self, medication_id: Optional[str] = None) -> List[LocalTimerHandle]:
        return [
            h for key, h in sorted(self._handles.items())
            if not h.cancelled and (medication_id is None or key[0] == medication_id)
        ]

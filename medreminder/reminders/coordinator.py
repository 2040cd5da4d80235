import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from medreminder.core.config import settings
from medreminder.utils.timezone import to_utc_aware

from .dispatcher import NotificationDispatcher
from .exceptions import NoValidTimes, StoreError
from .metrics import reminder_store_failures_total, reminders_resync_total, reminders_scheduled_total
from .repository import ReminderStore
from .scheduler import LocalScheduler, next_fire_time
from .schemas import (
    DeleteOutcome,
    DispatchReport,
    Medication,
    ProfileChangeAction,
    ProfileChangeConfirmation,
    ReminderFired,
    SaveOutcome,
    UserContactInfo,
)
from .timespec import TimeSpec, parse_time_spec, require_valid

logger = logging.getLogger(__name__)

LOCAL_ONLY_WARNING = "Reminders scheduled locally only"


class ReminderCoordinator:
    """
    Glue between medication edits, the persisted mirror and the local timers.

    Local scheduling never waits on, or depends on, the store succeeding; the
    store outcome only decides whether the caller gets a warning.
    """

    def __init__(
        self,
        store: ReminderStore,
        scheduler: LocalScheduler,
        dispatcher: NotificationDispatcher,
        send_confirmations: Optional[bool] = None,
    ):
        self._store = store
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._send_confirmations = settings.SEND_CONFIRMATIONS if send_confirmations is None else send_confirmations
        self._active: Dict[str, Tuple[Medication, UserContactInfo]] = {}
        scheduler.on_fired = self._record_fire

    def active_medications(self) -> List[Medication]:
        return [medication for medication, _ in self._active.values()]

    async def on_medication_saved(self, medication: Medication, recipient: UserContactInfo) -> SaveOutcome:
        if not medication.is_active or not medication.reminder_times:
            return await self._clear_reminders(medication)

        try:
            filtered = require_valid(medication.reminder_times)
        except NoValidTimes as e:
            logger.warning(f"[Coordinator] {medication.name} ({medication.id}): no valid reminder times in {e.rejected}")
            await self._confirm(
                medication.user_id,
                recipient,
                ProfileChangeConfirmation(
                    action=ProfileChangeAction.SAVE_FAILED,
                    medication_id=medication.id,
                    medication_name=medication.name,
                    detail=str(e),
                ),
            )
            raise

        if filtered.dropped:
            logger.warning(f"[Coordinator] Dropped {filtered.dropped} invalid reminder time(s) for {medication.name}: {filtered.rejected}")

        persisted, warning = await self._persist(medication, filtered.times)

        # Local timers are armed regardless of what happened to the mirror
        local_medication = medication.model_copy(update={"reminder_times": filtered.as_strings()})
        handles = self._scheduler.schedule_medication(local_medication, recipient)
        self._active[medication.id] = (local_medication, recipient)
        reminders_scheduled_total.inc()

        outcome = SaveOutcome(
            medication_id=medication.id,
            times=filtered.as_strings(),
            dropped=filtered.dropped,
            persisted=persisted,
            active_slots=len(handles),
            warning=warning,
        )
        outcome.confirmation = await self._confirm(
            medication.user_id,
            recipient,
            ProfileChangeConfirmation(
                action=ProfileChangeAction.SAVED,
                medication_id=medication.id,
                medication_name=medication.name,
                detail=f"Reminders set for {', '.join(outcome.times)}.",
            ),
        )
        return outcome

    async def on_medication_deleted(
        self, medication_id: str, recipient: Optional[UserContactInfo] = None
    ) -> DeleteOutcome:
        """Cancel server records and local timers; each is attempted regardless of the other."""
        entry = self._active.pop(medication_id, None)
        records_deleted, server_cancelled, warning = 0, True, None
        try:
            records_deleted = await asyncio.to_thread(self._store.cancel_for_medication, medication_id)
        except StoreError as e:
            server_cancelled = False
            warning = "Server reminders could not be cancelled"
            reminder_store_failures_total.inc()
            logger.error(f"[Coordinator] Failed to cancel server reminders for {medication_id}: {e}")
        finally:
            timers_cancelled = self._scheduler.cancel_all(medication_id)

        outcome = DeleteOutcome(
            medication_id=medication_id,
            server_cancelled=server_cancelled,
            records_deleted=records_deleted,
            timers_cancelled=timers_cancelled,
            warning=warning,
        )
        if recipient is None and entry is not None:
            recipient = entry[1]
        if recipient is not None:
            medication_name = entry[0].name if entry else None
            outcome.confirmation = await self._confirm(
                entry[0].user_id if entry else "",
                recipient,
                ProfileChangeConfirmation(
                    action=ProfileChangeAction.DELETED if server_cancelled else ProfileChangeAction.DELETE_FAILED,
                    medication_id=medication_id,
                    medication_name=medication_name,
                    detail=warning,
                ),
            )
        return outcome

    async def resynchronize(self, reason: str = "manual") -> int:
        """Cancel-then-recreate every active medication's timers. Idempotent."""
        slots = 0
        for medication, recipient in list(self._active.values()):
            slots += len(self._scheduler.schedule_medication(medication, recipient))
        reminders_resync_total.labels(reason=reason).inc()
        logger.info(f"[Coordinator] Resynchronized {len(self._active)} medication(s), {slots} slot(s) ({reason})")
        return slots

    def cancel_all(self) -> int:
        """Teardown: cancel every local timer and forget the registered medications."""
        self._active.clear()
        return self._scheduler.cancel_everything()

    async def _clear_reminders(self, medication: Medication) -> SaveOutcome:
        self._active.pop(medication.id, None)
        self._scheduler.cancel_all(medication.id)
        persisted, warning = True, None
        try:
            await asyncio.to_thread(self._store.cancel_for_medication, medication.id)
        except StoreError as e:
            persisted, warning = False, "Server reminders could not be cleared"
            reminder_store_failures_total.inc()
            logger.error(f"[Coordinator] Failed to clear server reminders for {medication.id}: {e}")
        logger.info(f"[Coordinator] {medication.name} ({medication.id}) has no active reminders")
        return SaveOutcome(medication_id=medication.id, persisted=persisted, warning=warning)

    async def _persist(self, medication: Medication, times: List[TimeSpec]) -> Tuple[bool, Optional[str]]:
        try:
            await asyncio.to_thread(
                self._store.replace_for_medication,
                medication.user_id,
                medication.id,
                medication.name,
                medication.dosage,
                times,
            )
        except StoreError as e:
            reminder_store_failures_total.inc()
            logger.error(f"[Coordinator] Server backup failed for {medication.name} ({medication.id}): {e}")
            return False, LOCAL_ONLY_WARNING
        logger.info(f"[Coordinator] Server backup scheduled for {medication.name}: {[str(t) for t in times]}")
        return True, None

    async def _confirm(
        self, user_id: str, recipient: UserContactInfo, event: ProfileChangeConfirmation
    ) -> Optional[DispatchReport]:
        if not self._send_confirmations:
            return None
        return await self._dispatcher.dispatch(user_id, event, recipient)

    async def _record_fire(self, event: ReminderFired, report: DispatchReport) -> None:
        parsed = parse_time_spec(event.time)
        next_trigger = next_fire_time(parsed, event.fired_at) if isinstance(parsed, TimeSpec) else None
        try:
            await asyncio.to_thread(
                self._store.mark_triggered,
                event.medication_id,
                event.time,
                to_utc_aware(event.fired_at),
                to_utc_aware(next_trigger),
            )
        except StoreError as e:
            logger.warning(f"[Coordinator] Could not record fire of {event.medication_id}@{event.time}: {e}")

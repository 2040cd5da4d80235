import asyncio
import logging
from typing import Dict, Tuple

from .channels import EmailChannel, PushChannel
from .exceptions import ChannelError
from .metrics import reminders_dispatch_total
from .schemas import (
    ChannelOutcome,
    ChannelStatus,
    DispatchReport,
    NotificationEvent,
    ProfileChangeAction,
    ReminderFired,
    UserContactInfo,
)

logger = logging.getLogger(__name__)

Event = NotificationEvent

_PROFILE_TITLES = {
    ProfileChangeAction.SAVED: "Medication Saved",
    ProfileChangeAction.DELETED: "Medication Deleted",
    ProfileChangeAction.SAVE_FAILED: "Medication Save Error",
    ProfileChangeAction.DELETE_FAILED: "Medication Delete Error",
}


def render_event(event: Event, recipient: UserContactInfo) -> Tuple[str, str, Dict[str, str]]:
    """Title, body and channel metadata for an event."""
    if isinstance(event, ReminderFired):
        title = f"Medication Reminder: {event.medication_name}"
        body = f"💊 Time to take your {event.medication_name}"
        if event.dosage:
            body += f" ({event.dosage})"
        metadata = {
            "type": "medication_reminder",
            "medication_id": event.medication_id,
            "medication_name": event.medication_name,
            "dosage": event.dosage,
            "time": event.time,
            "instructions": event.instructions or "Take as prescribed",
            "user_name": recipient.display_name,
        }
        return title, body, metadata

    title = _PROFILE_TITLES[event.action]
    name = event.medication_name or "your medication"
    if event.action == ProfileChangeAction.SAVED:
        body = f"{name} was saved."
    elif event.action == ProfileChangeAction.DELETED:
        body = f"{name} was deleted and its reminders were cancelled."
    elif event.action == ProfileChangeAction.SAVE_FAILED:
        body = f"Failed to save medication: {event.detail or 'unknown error'}"
    else:
        body = f"Failed to delete medication: {event.detail or 'unknown error'}"
    if event.detail and event.action in (ProfileChangeAction.SAVED, ProfileChangeAction.DELETED):
        body += f" {event.detail}"
    metadata = {
        "type": "profile_change",
        "action": event.action.value,
        "medication_id": event.medication_id or "",
        "medication_name": name,
        "user_name": recipient.display_name,
    }
    return title, body, metadata


class NotificationDispatcher:
    """Fans one event out to push and email. Both are always attempted; never raises."""

    def __init__(self, push: PushChannel = None, email: EmailChannel = None):
        self.push = push or PushChannel()
        self.email = email or EmailChannel()

    async def dispatch(self, user_id: str, event: Event, recipient: UserContactInfo) -> DispatchReport:
        title, body, metadata = render_event(event, recipient)
        push_outcome, email_outcome = await asyncio.gather(
            self._attempt(self.push, recipient.push_token, title, body, metadata),
            self._attempt(self.email, recipient.email, title, body, metadata),
        )
        report = DispatchReport(
            user_id=user_id,
            event_kind=event.kind,
            push=push_outcome,
            email=email_outcome,
        )
        if report.ok:
            logger.info(
                f"[Dispatch] {event.kind} for user {user_id}: push={push_outcome.status.value} "
                f"email={email_outcome.status.value}"
            )
        else:
            logger.warning(f"[Dispatch] {event.kind} for user {user_id} partially failed: {report.warnings}")
        return report

    async def _attempt(self, channel, recipient, title, body, metadata) -> ChannelOutcome:
        try:
            ack = await asyncio.to_thread(channel.send, recipient, title, body, metadata)
        except ChannelError as e:
            status = ChannelStatus.DEGRADED if e.soft else ChannelStatus.FAILED
            log = logger.info if e.soft else logger.error
            log(f"[Dispatch] {channel.name} {status.value}: {e}")
            outcome = ChannelOutcome(status=status, detail=str(e))
        except Exception as e:
            # A misbehaving channel must not take the other one down with it
            logger.exception(f"[Dispatch] {channel.name} raised unexpectedly")
            outcome = ChannelOutcome(status=ChannelStatus.FAILED, detail=repr(e))
        else:
            outcome = ChannelOutcome(status=ChannelStatus.SENT, message_id=ack.message_id)
        reminders_dispatch_total.labels(channel=channel.name, status=outcome.status.value).inc()
        return outcome

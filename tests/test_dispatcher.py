from datetime import datetime

import pytest

from medreminder.reminders.dispatcher import NotificationDispatcher, render_event
from medreminder.reminders.schemas import (
    ChannelStatus,
    ProfileChangeAction,
    ProfileChangeConfirmation,
    ReminderFired,
    UserContactInfo,
)
from tests.conftest import RecordingChannel


def _reminder(**overrides):
    data = dict(
        medication_id="med-1",
        medication_name="Metformin",
        dosage="500mg",
        time="09:00",
        fired_at=datetime(2024, 1, 1, 9, 0),
    )
    data.update(overrides)
    return ReminderFired(**data)


def test_render_reminder():
    title, body, meta = render_event(_reminder(), UserContactInfo(email="asha@example.com"))
    assert title == "Medication Reminder: Metformin"
    assert body == "💊 Time to take your Metformin (500mg)"
    assert meta["instructions"] == "Take as prescribed"
    assert meta["user_name"] == "asha"


def test_render_reminder_without_dosage_uses_notes():
    _, body, meta = render_event(_reminder(dosage="", instructions="With food"), UserContactInfo())
    assert body == "💊 Time to take your Metformin"
    assert meta["instructions"] == "With food"
    assert meta["user_name"] == "Dear User"


@pytest.mark.parametrize(
    "action, title",
    [
        (ProfileChangeAction.SAVED, "Medication Saved"),
        (ProfileChangeAction.DELETED, "Medication Deleted"),
        (ProfileChangeAction.SAVE_FAILED, "Medication Save Error"),
        (ProfileChangeAction.DELETE_FAILED, "Medication Delete Error"),
    ],
)
def test_render_profile_change_titles(action, title):
    event = ProfileChangeConfirmation(action=action, medication_name="Metformin", detail="boom")
    assert render_event(event, UserContactInfo())[0] == title


@pytest.mark.asyncio
async def test_dispatch_sends_on_both_channels(recipient):
    push, email = RecordingChannel("push"), RecordingChannel("email")
    report = await NotificationDispatcher(push=push, email=email).dispatch("user-1", _reminder(), recipient)
    assert report.ok
    assert report.push.status == ChannelStatus.SENT
    assert report.push.message_id == "push-1"
    assert report.email.status == ChannelStatus.SENT
    assert push.sent[0][0] == "fcm-token-123"
    assert email.sent[0][0] == "asha@example.com"


@pytest.mark.asyncio
async def test_unconfigured_push_degrades_without_failing(recipient):
    email = RecordingChannel("email")
    dispatcher = NotificationDispatcher(push=RecordingChannel("push", "unconfigured"), email=email)
    report = await dispatcher.dispatch("user-1", _reminder(), recipient)
    assert report.push.status == ChannelStatus.DEGRADED
    assert report.email.status == ChannelStatus.SENT
    assert report.ok
    assert report.warnings and report.warnings[0].startswith("push degraded")


@pytest.mark.asyncio
async def test_broken_channel_does_not_block_the_other(recipient):
    push = RecordingChannel("push")
    dispatcher = NotificationDispatcher(push=push, email=RecordingChannel("email", "broken"))
    report = await dispatcher.dispatch("user-1", _reminder(), recipient)
    assert report.email.status == ChannelStatus.FAILED
    assert report.push.status == ChannelStatus.SENT
    assert not report.ok
    assert len(push.sent) == 1


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained(recipient):
    class Exploding:
        name = "push"

        def send(self, *args):
            raise KeyError("surprise")

    dispatcher = NotificationDispatcher(push=Exploding(), email=RecordingChannel("email"))
    report = await dispatcher.dispatch("user-1", _reminder(), recipient)
    assert report.push.status == ChannelStatus.FAILED
    assert report.email.status == ChannelStatus.SENT


def test_report_serializes_camel_case(recipient):
    from medreminder.reminders.schemas import ChannelOutcome, DispatchReport

    report = DispatchReport(
        user_id="u",
        event_kind="reminder_fired",
        push=ChannelOutcome(status=ChannelStatus.SENT),
        email=ChannelOutcome(status=ChannelStatus.DEGRADED, detail="x"),
    )
    dumped = report.model_dump(by_alias=True)
    assert dumped["userId"] == "u"
    assert dumped["eventKind"] == "reminder_fired"
    assert dumped["ok"] is True

import asyncio
import os
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

# Must be set before medreminder.core.config is imported
os.environ.setdefault("REMINDER_DATABASE_URL", "sqlite://")
os.environ.setdefault("REMINDER_WATCHDOG_ENABLED", "false")
os.environ.setdefault("REMINDER_METRICS_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from medreminder.db.base import Base
from medreminder.reminders import models  # noqa: F401  registers tables
from medreminder.reminders.exceptions import ChannelNotConfigured, ChannelTransportError
from medreminder.reminders.schemas import (
    ChannelOutcome,
    ChannelStatus,
    DeliveryAck,
    DispatchReport,
    Medication,
    UserContactInfo,
)

TZ = ZoneInfo("Asia/Kolkata")


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Controllable wall clock whose ``sleep`` only returns when ``advance`` passes its deadline."""

    def __init__(self, start: datetime):
        self.now = start
        self._waiters = []

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + timedelta(seconds=seconds), future))
        await future

    @property
    def pending(self) -> int:
        return len([w for w in self._waiters if not w[1].done()])

    async def advance(self, seconds: float) -> None:
        target = self.now + timedelta(seconds=seconds)
        while True:
            await settle()
            self._waiters = [w for w in self._waiters if not w[1].done()]
            due = sorted((w for w in self._waiters if w[0] <= target), key=lambda w: w[0])
            if not due:
                break
            deadline, future = due[0]
            self._waiters.remove(due[0])
            self.now = max(self.now, deadline)
            future.set_result(None)
        self.now = target
        await settle()


class FakeDispatcher:
    """Records every dispatched event and reports both channels as sent."""

    def __init__(self):
        self.events = []

    async def dispatch(self, user_id, event, recipient):
        self.events.append((user_id, event, recipient))
        return DispatchReport(
            user_id=user_id,
            event_kind=event.kind,
            push=ChannelOutcome(status=ChannelStatus.SENT),
            email=ChannelOutcome(status=ChannelStatus.SENT),
        )

    def of_kind(self, kind):
        return [e for _, e, _ in self.events if e.kind == kind]


class RecordingChannel:
    """Synchronous channel double; behaviour is ``"ok"``, ``"unconfigured"`` or ``"broken"``."""

    def __init__(self, name: str, behaviour: str = "ok"):
        self.name = name
        self.behaviour = behaviour
        self.sent = []

    def send(self, recipient, title, body, metadata=None):
        if self.behaviour == "unconfigured":
            raise ChannelNotConfigured(self.name, "not configured")
        if self.behaviour == "broken":
            raise ChannelTransportError(self.name, "connection refused")
        self.sent.append((recipient, title, body, dict(metadata or {})))
        return DeliveryAck(channel=self.name, message_id=f"{self.name}-{len(self.sent)}")


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 8, 0, tzinfo=TZ))


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher()


@pytest.fixture
def recipient():
    return UserContactInfo(email="asha@example.com", push_token="fcm-token-123", name="Asha")


def make_medication(**overrides) -> Medication:
    data = {
        "id": "med-1",
        "user_id": "user-1",
        "name": "Metformin",
        "dosage": "500mg",
        "reminder_times": ["09:00"],
    }
    data.update(overrides)
    return Medication(**data)

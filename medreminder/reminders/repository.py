import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import StoreError
from .models import DeviceToken, ScheduledReminder
from .schemas import DeviceTokenCreate
from .timespec import TimeSpec

logger = logging.getLogger(__name__)


def replace_for_medication(
    db: Session,
    user_id: str,
    medication_id: str,
    medication_name: Optional[str],
    dosage: Optional[str],
    times: Sequence[TimeSpec],
) -> int:
    """Delete every record of the medication, then insert one per time.

    Best-effort, not one transaction: a failed insert is logged and the rest
    still run. Raises ``StoreError`` afterwards if anything failed, carrying how
    many records did persist. Nothing is rolled back.
    """
    deleted = cancel_for_medication(db, medication_id)
    logger.info(f"[Store] Cleared {deleted} existing reminders for medication {medication_id}")

    persisted = 0
    failures: List[str] = []
    for t in times:
        record = ScheduledReminder(
            user_id=user_id,
            medication_id=medication_id,
            medication_name=medication_name or "Unnamed Medication",
            dosage=dosage or "",
            time=str(t),
            hours=t.hour,
            minutes=t.minute,
            active=True,
        )
        try:
            db.add(record)
            db.commit()
            persisted += 1
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[Store] Failed to insert reminder {t} for medication {medication_id}: {e!r}")
            failures.append(str(t))

    if failures:
        raise StoreError(
            f"Persisted {persisted}/{len(times)} reminders for medication {medication_id}; failed: {', '.join(failures)}",
            persisted=persisted,
        )
    return persisted


def cancel_for_medication(db: Session, medication_id: str) -> int:
    """Delete all records of a medication. Idempotent: returns 0 when none exist."""
    try:
        result = db.execute(delete(ScheduledReminder).where(ScheduledReminder.medication_id == medication_id))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"Failed to delete reminders for medication {medication_id}: {e}") from e
    return result.rowcount or 0


def list_reminders(
    db: Session,
    user_id: Optional[str] = None,
    medication_id: Optional[str] = None,
    active: Optional[bool] = None,
    limit: int = 500,
) -> List[ScheduledReminder]:
    stmt = select(ScheduledReminder).order_by(ScheduledReminder.hours, ScheduledReminder.minutes).limit(limit)
    if user_id:
        stmt = stmt.where(ScheduledReminder.user_id == user_id)
    if medication_id:
        stmt = stmt.where(ScheduledReminder.medication_id == medication_id)
    if active is not None:
        stmt = stmt.where(ScheduledReminder.active == active)
    try:
        return list(db.execute(stmt).scalars())
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to list reminders: {e}") from e


def mark_triggered(
    db: Session,
    medication_id: str,
    time: str,
    triggered_at: datetime,
    next_trigger: Optional[datetime] = None,
) -> int:
    """Record a local fire on the mirror row(s) for that slot."""
    try:
        result = db.execute(
            update(ScheduledReminder)
            .where(ScheduledReminder.medication_id == medication_id, ScheduledReminder.time == time)
            .values(
                last_triggered=triggered_at,
                next_trigger=next_trigger,
                total_sent=ScheduledReminder.total_sent + 1,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"Failed to mark reminder {medication_id}@{time} triggered: {e}") from e
    return result.rowcount or 0


def upsert_device_token(db: Session, data: DeviceTokenCreate) -> DeviceToken:
    existing = (
        db.query(DeviceToken)
        .filter(DeviceToken.user_id == data.user_id, DeviceToken.platform == data.platform)
        .order_by(DeviceToken.created_at.desc())
        .first()
    )
    if existing:
        existing.fcm_token = data.fcm_token
        existing.updated_at = datetime.utcnow()
        db.add(existing)
        db.commit()
        db.refresh(existing)
        return existing
    token = DeviceToken(user_id=data.user_id, platform=data.platform, fcm_token=data.fcm_token)
    db.add(token)
    db.commit()
    db.refresh(token)
    return token


def get_latest_token_for_user(db: Session, user_id: str, platform: Optional[str] = None) -> Optional[str]:
    query = db.query(DeviceToken).filter(DeviceToken.user_id == user_id)
    if platform:
        query = query.filter(DeviceToken.platform == platform)
    t = query.order_by(DeviceToken.updated_at.desc()).first()
    return t.fcm_token if t else None


class ReminderStore:
    """Session-owning facade over the repository functions, for use outside a request."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def replace_for_medication(
        self,
        user_id: str,
        medication_id: str,
        medication_name: Optional[str],
        dosage: Optional[str],
        times: Sequence[TimeSpec],
    ) -> int:
        db = self._session_factory()
        try:
            return replace_for_medication(db, user_id, medication_id, medication_name, dosage, times)
        except SQLAlchemyError as e:
            raise StoreError(f"Reminder store unavailable: {e}") from e
        finally:
            db.close()

    def cancel_for_medication(self, medication_id: str) -> int:
        db = self._session_factory()
        try:
            return cancel_for_medication(db, medication_id)
        finally:
            db.close()

    def list_reminders(self, **filters) -> List[ScheduledReminder]:
        db = self._session_factory()
        try:
            return list_reminders(db, **filters)
        finally:
            db.close()

    def mark_triggered(self, medication_id: str, time: str, triggered_at: datetime,
                       next_trigger: Optional[datetime] = None) -> int:
        db = self._session_factory()
        try:
            return mark_triggered(db, medication_id, time, triggered_at, next_trigger)
        finally:
            db.close()

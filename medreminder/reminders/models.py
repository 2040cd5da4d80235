"""
Reminder persistence models - passive server-side mirror of the local timers
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Index
import uuid

from medreminder.db.base import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class ScheduledReminder(Base):
    """One row per (medication, HH:MM) slot; replaced wholesale on every edit"""
    __tablename__ = "scheduled_reminders"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, index=True)
    medication_id = Column(String, nullable=False, index=True)
    medication_name = Column(String, nullable=False, default="Unnamed Medication")
    dosage = Column(String, nullable=False, default="")
    time = Column(String(5), nullable=False)  # canonical HH:MM
    hours = Column(Integer, nullable=False)
    minutes = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_triggered = Column(DateTime(timezone=True), nullable=True)
    next_trigger = Column(DateTime(timezone=True), nullable=True)
    total_sent = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_scheduled_reminders_user_medication", "user_id", "medication_id"),
    )


class DeviceToken(Base):
    """Latest FCM registration token per user and platform"""
    __tablename__ = "device_tokens"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False)
    fcm_token = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_device_tokens_user_platform", "user_id", "platform"),
    )

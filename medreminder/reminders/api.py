import asyncio
import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from medreminder.api.deps import (
    get_coordinator,
    get_dispatcher,
    get_lifecycle_monitor,
    verify_api_key_dependency,
)
from medreminder.core.config import settings
from medreminder.db.session import get_db

from .coordinator import ReminderCoordinator
from .dispatcher import NotificationDispatcher
from .exceptions import ChannelError, ChannelNotConfigured, NoValidTimes, StoreError
from .lifecycle import LifecycleMonitor
from .metrics import reminder_store_failures_total
from .repository import cancel_for_medication, get_latest_token_for_user, list_reminders, replace_for_medication, upsert_device_token
from .schemas import (
    DeleteOutcome,
    DeviceTokenCreate,
    DeviceTokenRead,
    EmailRequest,
    EmailResponse,
    LifecycleEvent,
    LifecycleResponse,
    MedicationDeleteRequest,
    MedicationSaveRequest,
    PushRequest,
    PushResponse,
    ReminderCancelRequest,
    ReminderCancelResponse,
    ReminderRecordRead,
    ReminderScheduleRequest,
    ReminderScheduleResponse,
    SaveOutcome,
)
from .timespec import require_valid

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


# Server-side reminder records

@router.post("/reminders", response_model=ReminderScheduleResponse)
def schedule_reminders_endpoint(payload: ReminderScheduleRequest, db: Session = Depends(get_db)):
    if not payload.user_id or not payload.medication_id or not isinstance(payload.reminder_times, list):
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        filtered = require_valid(payload.reminder_times)
    except NoValidTimes as e:
        raise HTTPException(status_code=400, detail=str(e))

    name = payload.medication_name or "Unnamed Medication"
    try:
        replace_for_medication(db, payload.user_id, payload.medication_id, name, payload.dosage, filtered.times)
    except StoreError as e:
        reminder_store_failures_total.inc()
        logger.error(f"[API] Failed to schedule reminders for {payload.medication_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    times = filtered.as_strings()
    return ReminderScheduleResponse(
        success=True,
        times=times,
        message=f"Scheduled {len(times)} reminders for {name}",
        dropped=filtered.dropped,
    )


@router.delete("/reminders", response_model=ReminderCancelResponse)
def cancel_reminders_endpoint(payload: ReminderCancelRequest, db: Session = Depends(get_db)):
    if not payload.medication_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        deleted = cancel_for_medication(db, payload.medication_id)
    except StoreError as e:
        reminder_store_failures_total.inc()
        raise HTTPException(status_code=500, detail=str(e))
    return ReminderCancelResponse(success=True, deleted=deleted)


@router.get("/reminders", response_model=List[ReminderRecordRead])
def list_reminders_endpoint(
    user_id: Optional[str] = Query(None, alias="userId"),
    medication_id: Optional[str] = Query(None, alias="medicationId"),
    active: Optional[bool] = None,
    limit: int = 500,
    db: Session = Depends(get_db),
):
    try:
        items = list_reminders(db, user_id=user_id, medication_id=medication_id, active=active, limit=limit)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [ReminderRecordRead.model_validate(i, from_attributes=True) for i in items]


# Direct notification endpoints

@router.post("/notify/push", response_model=PushResponse)
async def send_push_endpoint(payload: PushRequest, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    if not payload.token or not payload.title or not payload.body:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        ack = await asyncio.to_thread(dispatcher.push.send, payload.token, payload.title, payload.body, payload.data)
    except ChannelNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ChannelError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return PushResponse(success=True, response=ack.message_id)


@router.post("/notify/email", response_model=EmailResponse)
async def send_email_endpoint(payload: EmailRequest, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    if not payload.to or not payload.subject or not payload.message:
        raise HTTPException(status_code=400, detail="Missing required fields: to, subject, message")
    if not EMAIL_RE.match(payload.to):
        raise HTTPException(status_code=400, detail="Invalid email address")

    metadata = {
        "medication_name": payload.medication_name,
        "dosage": payload.dosage,
        "instructions": payload.instructions,
        "user_name": payload.user_name,
    }
    try:
        await asyncio.to_thread(dispatcher.email.send, payload.to, payload.subject, payload.message, metadata)
    except ChannelNotConfigured as e:
        raise HTTPException(status_code=503, detail=f"Email service not configured: {e}")
    except ChannelError as e:
        raise HTTPException(status_code=500, detail=str(e))
    logger.info(f"[Email] Sent to {payload.to}")
    return EmailResponse(success=True, message="Email sent successfully", recipient=payload.to)


@router.get("/notify/email")
def email_health_endpoint():
    return {
        "service": "Email Service",
        "status": "active",
        "configured": settings.smtp_configured,
        "smtpServer": settings.SMTP_SERVER,
    }


@router.post("/devices", response_model=DeviceTokenRead)
def register_device_endpoint(payload: DeviceTokenCreate, db: Session = Depends(get_db)):
    token = upsert_device_token(db, payload)
    return DeviceTokenRead.model_validate(token, from_attributes=True)


# Medication lifecycle

@router.put("/medications/{medication_id}", response_model=SaveOutcome)
async def save_medication_endpoint(
    medication_id: str,
    payload: MedicationSaveRequest,
    coordinator: ReminderCoordinator = Depends(get_coordinator),
    db: Session = Depends(get_db),
):
    medication = payload.medication.model_copy(update={"id": medication_id})
    contact = payload.contact
    if not contact.push_token:
        # Fall back to the most recently registered device
        token = await asyncio.to_thread(get_latest_token_for_user, db, medication.user_id)
        if token:
            contact = contact.model_copy(update={"push_token": token})
    try:
        return await coordinator.on_medication_saved(medication, contact)
    except NoValidTimes as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/medications/{medication_id}", response_model=DeleteOutcome)
async def delete_medication_endpoint(
    medication_id: str,
    payload: Optional[MedicationDeleteRequest] = None,
    coordinator: ReminderCoordinator = Depends(get_coordinator),
):
    contact = payload.contact if payload else None
    return await coordinator.on_medication_deleted(medication_id, contact)


@router.post("/lifecycle", response_model=LifecycleResponse)
async def lifecycle_endpoint(event: LifecycleEvent, monitor: LifecycleMonitor = Depends(get_lifecycle_monitor)):
    if event.state == "hidden":
        monitor.on_hidden()
        return LifecycleResponse(state=event.state, resynchronized=False)
    if event.state == "visible":
        resynced = await monitor.on_visible()
        return LifecycleResponse(state=event.state, resynchronized=resynced)
    monitor.on_focus()
    return LifecycleResponse(state=event.state, resynchronized=False, scheduled=True)

"""
Schemas for medications, reminder records, notification events and the HTTP API
"""
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase; Python attributes stay snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Frequency(str, Enum):
    ONCE = "once"
    TWICE = "twice"
    THRICE = "thrice"
    FOUR_TIMES = "four-times"
    AS_NEEDED = "as-needed"


class Medication(CamelModel):
    id: str
    user_id: str
    name: str
    dosage: str = ""
    frequency: Frequency = Frequency.ONCE
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    reminder_times: List[Any] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserContactInfo(CamelModel):
    email: Optional[str] = None
    push_token: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.email and "@" in self.email:
            return self.email.split("@")[0]
        return "Dear User"


# Notification events (tagged by ``kind``)

class ReminderFired(CamelModel):
    kind: Literal["reminder_fired"] = "reminder_fired"
    medication_id: str
    medication_name: str
    dosage: str = ""
    time: str
    instructions: Optional[str] = None
    fired_at: datetime


class ProfileChangeAction(str, Enum):
    SAVED = "saved"
    DELETED = "deleted"
    SAVE_FAILED = "save_failed"
    DELETE_FAILED = "delete_failed"


class ProfileChangeConfirmation(CamelModel):
    kind: Literal["profile_change"] = "profile_change"
    action: ProfileChangeAction
    medication_id: Optional[str] = None
    medication_name: Optional[str] = None
    detail: Optional[str] = None


NotificationEvent = Annotated[
    Union[ReminderFired, ProfileChangeConfirmation], Field(discriminator="kind")
]


# Dispatch results

class DeliveryAck(CamelModel):
    channel: str
    message_id: Optional[str] = None


class ChannelStatus(str, Enum):
    SENT = "sent"
    DEGRADED = "degraded"  # channel not configured: soft, never fails the action
    FAILED = "failed"


class ChannelOutcome(CamelModel):
    status: ChannelStatus
    detail: Optional[str] = None
    message_id: Optional[str] = None


class DispatchReport(CamelModel):
    user_id: str
    event_kind: str
    push: ChannelOutcome
    email: ChannelOutcome

    @computed_field
    @property
    def ok(self) -> bool:
        return ChannelStatus.FAILED not in (self.push.status, self.email.status)

    @computed_field
    @property
    def warnings(self) -> List[str]:
        out = []
        for name, outcome in (("push", self.push), ("email", self.email)):
            if outcome.status != ChannelStatus.SENT:
                out.append(f"{name} {outcome.status.value}: {outcome.detail or 'no detail'}")
        return out


# Coordinator results

class SaveOutcome(CamelModel):
    medication_id: str
    times: List[str] = Field(default_factory=list)
    dropped: int = 0
    persisted: bool = False
    active_slots: int = 0
    warning: Optional[str] = None
    confirmation: Optional[DispatchReport] = None


class DeleteOutcome(CamelModel):
    medication_id: str
    server_cancelled: bool
    records_deleted: int = 0
    timers_cancelled: int = 0
    warning: Optional[str] = None
    confirmation: Optional[DispatchReport] = None


# HTTP API

class ReminderScheduleRequest(CamelModel):
    user_id: Optional[str] = None
    medication_id: Optional[str] = None
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    reminder_times: Optional[List[Any]] = None


class ReminderScheduleResponse(CamelModel):
    success: bool
    times: List[str]
    message: str
    dropped: int = 0


class ReminderCancelRequest(CamelModel):
    medication_id: Optional[str] = None


class ReminderCancelResponse(CamelModel):
    success: bool
    deleted: int


class ReminderRecordRead(CamelModel):
    id: str
    user_id: str
    medication_id: str
    medication_name: str
    dosage: str
    time: str
    active: bool
    created_at: datetime
    last_triggered: Optional[datetime] = None
    next_trigger: Optional[datetime] = None
    total_sent: int = 0


class PushRequest(CamelModel):
    token: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)


class PushResponse(CamelModel):
    success: bool
    response: Optional[str] = None
    error: Optional[str] = None


class EmailRequest(CamelModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    instructions: Optional[str] = None
    user_name: Optional[str] = None


class EmailResponse(CamelModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    recipient: Optional[str] = None


class DeviceTokenCreate(CamelModel):
    user_id: str
    platform: str = Field(default="web", pattern="^(ios|android|web)$")
    fcm_token: str


class DeviceTokenRead(CamelModel):
    id: str
    user_id: str
    platform: str
    fcm_token: str
    created_at: datetime
    updated_at: datetime


class MedicationSaveRequest(CamelModel):
    medication: Medication
    contact: UserContactInfo = Field(default_factory=UserContactInfo)


class MedicationDeleteRequest(CamelModel):
    contact: Optional[UserContactInfo] = None


class LifecycleEvent(CamelModel):
    state: Literal["hidden", "visible", "focus"]


class LifecycleResponse(CamelModel):
    state: str
    resynchronized: bool
    scheduled: bool = False

"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    model_validator,
)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_to_utc)]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class EventCategory(str, Enum):
    FOOD = "food"
    SLEEP = "sleep"
    DIAPER = "diaper"
    MEDICINE = "medicine"
    ACTIVITY = "activity"
    INCIDENT = "incident"
    GENERAL_NOTE = "general_note"


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    SNACK = "snack"


class DiaperType(str, Enum):
    PEE = "pee"
    POO = "poo"
    BOTH = "both"


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    PARENT = "parent"


# --- Event details -----------------------------------------------------------


class _Details(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FoodDetails(_Details):
    meal_type: MealType
    description: Optional[str] = None


class SleepDetails(_Details):
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _end_after_start(self) -> "SleepDetails":
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not be earlier than start_time")
        return self


class DiaperDetails(_Details):
    type: DiaperType
    observation: Optional[str] = None


class MedicineDetails(_Details):
    name: NonEmptyStr
    dose: NonEmptyStr


class NoteDetails(_Details):
    description: Optional[str] = None


# --- Payloads (what the authoring session produces) --------------------------


class _PayloadBase(BaseModel):
    event_time: UtcDatetime


class FoodPayload(_PayloadBase):
    category: Literal["food"] = "food"
    details: FoodDetails


class SleepPayload(_PayloadBase):
    category: Literal["sleep"] = "sleep"
    details: SleepDetails


class DiaperPayload(_PayloadBase):
    category: Literal["diaper"] = "diaper"
    details: DiaperDetails


class MedicinePayload(_PayloadBase):
    category: Literal["medicine"] = "medicine"
    details: MedicineDetails


class NotePayload(_PayloadBase):
    category: Literal["activity", "incident", "general_note"]
    details: NoteDetails = Field(default_factory=NoteDetails)


EventPayload = Annotated[
    Union[FoodPayload, SleepPayload, DiaperPayload, MedicinePayload, NotePayload],
    Field(discriminator="category"),
]
EVENT_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(EventPayload)


# --- Persisted documents -----------------------------------------------------


class AuditFields(BaseModel):
    created_at: UtcDatetime
    created_by: str
    updated_at: UtcDatetime
    updated_by: str
    deleted_at: Optional[UtcDatetime] = None
    deleted_by: Optional[str] = None


class EventRecord(AuditFields):
    id: str
    child_id: str
    staff_id: str


class FoodEvent(EventRecord, FoodPayload):
    pass


class SleepEvent(EventRecord, SleepPayload):
    pass


class DiaperEvent(EventRecord, DiaperPayload):
    pass


class MedicineEvent(EventRecord, MedicinePayload):
    pass


class NoteEvent(EventRecord, NotePayload):
    pass


Event = Annotated[
    Union[FoodEvent, SleepEvent, DiaperEvent, MedicineEvent, NoteEvent],
    Field(discriminator="category"),
]
EVENT_ADAPTER: TypeAdapter = TypeAdapter(Event)


class LastEventSummary(BaseModel):
    """Projection of a child's most recent event, cached on the child document."""

    event_id: Optional[str] = None
    category: EventCategory
    event_time: UtcDatetime
    description: Optional[str] = None


class Child(AuditFields):
    id: str
    first_name: str
    last_name: str = ""
    avatar_url: Optional[str] = None
    classroom_id: str
    parent_ids: List[str] = Field(default_factory=list)
    last_event: Optional[LastEventSummary] = None


class Classroom(AuditFields):
    id: str
    name: str
    teacher_ids: List[str] = Field(default_factory=list)
    year: Optional[int] = None


class TeacherProfile(BaseModel):
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    shift: Optional[str] = None
    employee_id: Optional[str] = None
    classroom_ids: List[str] = Field(default_factory=list)


class User(AuditFields):
    uid: str
    email: str
    first_name: str = ""
    last_name: str = ""
    avatar_url: Optional[str] = None
    roles: List[UserRole] = Field(default_factory=list)
    children_ids: List[str] = Field(default_factory=list)
    teacher_profile: Optional[TeacherProfile] = None

    def has_role(self, role: UserRole | str) -> bool:
        return UserRole(role) in self.roles

"""Declarative catalog of event categories.

Every consumer (authoring session, summary renderer, payload validation, the
category listing endpoint) reads category behavior from ``EVENTS_CONFIG``.
Adding a category means adding one entry here plus its detail model in
``schemas``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel

from .config import CONFIG
from .schemas import (
    DiaperDetails,
    EventCategory,
    FoodDetails,
    MedicineDetails,
    NoteDetails,
    SleepDetails,
)


class FormType(str, Enum):
    SIMPLE = "simple"
    CUSTOM = "custom"
    NOTE = "note"


@dataclass(frozen=True)
class DetailOption:
    id: str
    label: str


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    kind: str = "text"  # text | time
    required: bool = False


@dataclass(frozen=True)
class EventConfigItem:
    id: EventCategory
    label: str
    icon: str
    color: str
    form_type: FormType
    details_model: Type[BaseModel]
    describe: Callable[[Any], str]
    options: Tuple[DetailOption, ...] = ()
    option_field: Optional[str] = None
    option_label: Optional[str] = None
    comment_field: Optional[str] = None
    fields: Tuple[FormField, ...] = ()
    # When set, the edited time is stored in details[start_field] and the
    # event's own event_time is the submission time.
    start_field: Optional[str] = None
    time_label: str = "Event time"

    @property
    def required_fields(self) -> List[str]:
        required: List[str] = []
        if self.form_type is FormType.SIMPLE and self.option_field:
            required.append(self.option_field)
        required.extend(field.name for field in self.fields if field.required)
        return required

    @property
    def editable_fields(self) -> List[str]:
        names: List[str] = []
        if self.option_field:
            names.append(self.option_field)
        if self.comment_field:
            names.append(self.comment_field)
        names.extend(field.name for field in self.fields)
        return names

    def field(self, name: str) -> Optional[FormField]:
        return next((field for field in self.fields if field.name == name), None)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "label": self.label,
            "icon": self.icon,
            "color": self.color,
            "form_type": self.form_type.value,
            "time_label": self.time_label,
            "options": [{"id": option.id, "label": option.label} for option in self.options],
            "option_field": self.option_field,
            "option_label": self.option_label,
            "comment_field": self.comment_field,
            "fields": [
                {"name": field.name, "label": field.label, "kind": field.kind, "required": field.required}
                for field in self.fields
            ],
            "required_fields": self.required_fields,
        }


def format_time(value: datetime) -> str:
    return value.astimezone(CONFIG.tzinfo).strftime("%H:%M")


def _with_comment(sentence: str, comment: Optional[str]) -> str:
    comment = (comment or "").strip()
    return f"{sentence} {comment}" if comment else sentence


def _describe_food(details: FoodDetails) -> str:
    return _with_comment(f"Ate {details.meal_type.value}.", details.description)


def _describe_sleep(details: SleepDetails) -> str:
    start = format_time(details.start_time)
    if details.end_time is not None:
        return f"Slept from {start} to {format_time(details.end_time)}."
    return f"Started a nap at {start}."


def _describe_diaper(details: DiaperDetails) -> str:
    return _with_comment(f"Diaper change ({details.type.value}).", details.observation)


def _describe_medicine(details: MedicineDetails) -> str:
    return f"Took {details.name} ({details.dose})."


def _describe_note(fallback: str, template: str = "{description}") -> Callable[[NoteDetails], str]:
    def describe(details: NoteDetails) -> str:
        description = (details.description or "").strip().rstrip(".")
        if not description:
            return fallback
        return template.format(description=description)

    return describe


EVENTS_CONFIG: Dict[EventCategory, EventConfigItem] = {
    EventCategory.FOOD: EventConfigItem(
        id=EventCategory.FOOD,
        label="Food",
        icon="apple",
        color="#2e8b57",
        form_type=FormType.SIMPLE,
        details_model=FoodDetails,
        describe=_describe_food,
        options=(
            DetailOption("breakfast", "Breakfast"),
            DetailOption("lunch", "Lunch"),
            DetailOption("snack", "Snack"),
        ),
        option_field="meal_type",
        option_label="Meal type",
        comment_field="description",
    ),
    EventCategory.SLEEP: EventConfigItem(
        id=EventCategory.SLEEP,
        label="Sleep",
        icon="moon",
        color="#8a2be2",
        form_type=FormType.CUSTOM,
        details_model=SleepDetails,
        describe=_describe_sleep,
        fields=(FormField("end_time", "End time (optional)", kind="time"),),
        start_field="start_time",
        time_label="Start time",
    ),
    EventCategory.DIAPER: EventConfigItem(
        id=EventCategory.DIAPER,
        label="Diaper",
        icon="baby",
        color="#0066ff",
        form_type=FormType.SIMPLE,
        details_model=DiaperDetails,
        describe=_describe_diaper,
        options=(
            DetailOption("pee", "Pee"),
            DetailOption("poo", "Poo"),
            DetailOption("both", "Both"),
        ),
        option_field="type",
        option_label="Diaper type",
        comment_field="observation",
    ),
    EventCategory.MEDICINE: EventConfigItem(
        id=EventCategory.MEDICINE,
        label="Medicine",
        icon="pill",
        color="#ff9966",
        form_type=FormType.CUSTOM,
        details_model=MedicineDetails,
        describe=_describe_medicine,
        fields=(
            FormField("name", "Medicine name", required=True),
            FormField("dose", "Dose", required=True),
        ),
    ),
    EventCategory.ACTIVITY: EventConfigItem(
        id=EventCategory.ACTIVITY,
        label="Activity",
        icon="palette",
        color="#ffc300",
        form_type=FormType.NOTE,
        details_model=NoteDetails,
        describe=_describe_note("Activity logged.", "{description}."),
        comment_field="description",
    ),
    EventCategory.INCIDENT: EventConfigItem(
        id=EventCategory.INCIDENT,
        label="Incident",
        icon="alert-circle",
        color="#ff4444",
        form_type=FormType.NOTE,
        details_model=NoteDetails,
        describe=_describe_note("Incident reported.", "Incident: {description}."),
        comment_field="description",
    ),
    EventCategory.GENERAL_NOTE: EventConfigItem(
        id=EventCategory.GENERAL_NOTE,
        label="Note",
        icon="message-square-text",
        color="#999999",
        form_type=FormType.NOTE,
        details_model=NoteDetails,
        describe=_describe_note("Note added.", "{description}."),
        comment_field="description",
    ),
}

_missing = set(EventCategory) - set(EVENTS_CONFIG)
if _missing:
    raise RuntimeError(f"Event categories without registry entries: {sorted(c.value for c in _missing)}")


def get_event_config(category: Union[EventCategory, str]) -> EventConfigItem:
    """Look up a category entry; raises ValueError for unknown categories."""
    return EVENTS_CONFIG[EventCategory(category)]


def list_event_configs() -> List[EventConfigItem]:
    return list(EVENTS_CONFIG.values())


def describe_event(category: Union[EventCategory, str], details: Union[BaseModel, Mapping[str, Any]]) -> str:
    """Render the human-readable summary line for an event's details."""
    config = get_event_config(category)
    if not isinstance(details, config.details_model):
        details = config.details_model.model_validate(
            details.model_dump() if isinstance(details, BaseModel) else details
        )
    return config.describe(details)

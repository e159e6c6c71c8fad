"""Two-step event authoring state machine.

A session starts in category selection. Picking a category moves it to
detail entry, keeping only the shared event time. Fields are collected as the
registry entry for the category describes them, and ``submit`` hands a
category-correct payload to a handler (normally ``events.create_events``).
The session has no UI dependency.
"""
from __future__ import annotations

import logging
from datetime import datetime, time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from .config import CONFIG
from .event_registry import EventConfigItem, FormType, get_event_config
from .events import EventCreationError
from .schemas import EVENT_PAYLOAD_ADAPTER, EventCategory, EventPayload

logger = logging.getLogger(__name__)


class AuthoringStep(str, Enum):
    CATEGORY_SELECTION = "category_selection"
    DETAIL_ENTRY = "detail_entry"


class AuthoringValidationError(ValueError):
    """Missing or malformed fields; ``errors`` maps field name to message."""

    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("; ".join(errors.values()))
        self.errors = errors


class AuthoringStateError(RuntimeError):
    pass


def _default_clock() -> datetime:
    return datetime.now(tz=CONFIG.tzinfo)


class EventAuthoringSession:
    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _default_clock
        self.reset()

    def reset(self) -> None:
        self.step = AuthoringStep.CATEGORY_SELECTION
        self.category: Optional[EventCategory] = None
        self.event_time: datetime = self._clock()
        self.submitting = False
        self.error: Optional[str] = None
        self._fields: Dict[str, Any] = {}

    @property
    def config(self) -> Optional[EventConfigItem]:
        return get_event_config(self.category) if self.category is not None else None

    @property
    def time_label(self) -> str:
        config = self.config
        return config.time_label if config else "Event time"

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def _ensure_idle(self) -> None:
        if self.submitting:
            raise AuthoringStateError("submission in progress")

    def select_category(self, category: Union[EventCategory, str]) -> None:
        self._ensure_idle()
        config = get_event_config(category)
        self.category = config.id
        self._fields = {}
        self.error = None
        self.step = AuthoringStep.DETAIL_ENTRY

    def back(self) -> None:
        self._ensure_idle()
        self.category = None
        self._fields = {}
        self.error = None
        self.step = AuthoringStep.CATEGORY_SELECTION

    def close(self) -> None:
        self._ensure_idle()
        self.reset()

    def _parse_time(self, name: str, value: Union[str, datetime]) -> datetime:
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=CONFIG.tzinfo)
        raw = (value or "").strip()
        try:
            hours, minutes = (int(part) for part in raw.split(":"))
            clock_time = time(hours, minutes)
        except ValueError:
            raise AuthoringValidationError({name: "Enter a time as HH:MM."}) from None
        today = self._clock().astimezone(CONFIG.tzinfo).date()
        return datetime.combine(today, clock_time, tzinfo=CONFIG.tzinfo)

    def set_time(self, value: Union[str, datetime]) -> None:
        self._ensure_idle()
        self.event_time = self._parse_time("event_time", value)

    def set_field(self, name: str, value: Any) -> None:
        self._ensure_idle()
        config = self.config
        if self.step is not AuthoringStep.DETAIL_ENTRY or config is None:
            raise AuthoringStateError("pick a category before entering details")
        if name not in config.editable_fields:
            raise AuthoringValidationError({name: f"{config.label} has no field named {name}."})

        if value is None or (isinstance(value, str) and not value.strip()):
            self._fields.pop(name, None)
            return

        form_field = config.field(name)
        if name == config.option_field:
            option_ids = {option.id for option in config.options}
            if value not in option_ids:
                raise AuthoringValidationError({name: f"Choose one of: {', '.join(sorted(option_ids))}."})
            self._fields[name] = value
        elif form_field is not None and form_field.kind == "time":
            self._fields[name] = self._parse_time(name, value)
        else:
            self._fields[name] = str(value).strip()

    def select_option(self, option_id: str) -> None:
        config = self.config
        if config is None or config.form_type is not FormType.SIMPLE:
            raise AuthoringStateError("current category has no options")
        self.set_field(config.option_field, option_id)

    def validation_errors(self) -> Dict[str, str]:
        config = self.config
        if self.step is not AuthoringStep.DETAIL_ENTRY or config is None:
            return {"category": "Choose an event category."}

        errors: Dict[str, str] = {}
        for name in config.required_fields:
            if name in self._fields:
                continue
            if name == config.option_field:
                errors[name] = f"{config.option_label or 'Option'} is required."
            else:
                form_field = config.field(name)
                errors[name] = f"{form_field.label if form_field else name} is required."

        if config.start_field:
            for form_field in config.fields:
                value = self._fields.get(form_field.name)
                if form_field.kind == "time" and value is not None and value < self.event_time:
                    errors[form_field.name] = f"{form_field.label} cannot be before the {config.time_label.lower()}."
        return errors

    @property
    def can_submit(self) -> bool:
        return not self.submitting and not self.validation_errors()

    def build_payload(self) -> EventPayload:
        errors = self.validation_errors()
        if errors:
            raise AuthoringValidationError(errors)

        config = self.config
        details: Dict[str, Any] = {
            name: self._fields[name] for name in config.editable_fields if name in self._fields
        }
        event_time = self.event_time
        if config.start_field:
            details[config.start_field] = self.event_time
            event_time = self._clock()

        try:
            return EVENT_PAYLOAD_ADAPTER.validate_python(
                {"category": config.id.value, "event_time": event_time, "details": details}
            )
        except ValidationError as exc:
            raise AuthoringValidationError(
                {str(err["loc"][-1]) if err["loc"] else "details": err["msg"] for err in exc.errors()}
            ) from exc

    def submit(self, handler: Callable[[EventPayload], None]) -> bool:
        """Build the payload and pass it to ``handler``.

        Returns True and resets the session when the handler succeeds. When the
        handler raises ``EventCreationError`` the session keeps its state so
        the author can retry, and ``error`` holds the message to show.
        """
        self._ensure_idle()
        payload = self.build_payload()
        self.submitting = True
        try:
            handler(payload)
        except EventCreationError as exc:
            self.submitting = False
            self.error = str(exc)
            logger.info("event submission failed", extra={"category": payload.category, "reason": exc.reason})
            return False
        except BaseException:
            self.submitting = False
            raise
        self.reset()
        return True

"""Event creation engine, soft deletion and timeline reads.

``create_events`` is the only writer of event documents and of the
``last_event`` summary cached on each child. A group event for N children is
written as N event inserts plus N child updates inside one SQLite
transaction: either every child gets its event and refreshed summary, or the
transaction is rolled back and nothing is visible.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from . import db
from .config import CONFIG
from .event_registry import describe_event
from .schemas import EVENT_ADAPTER, EVENT_PAYLOAD_ADAPTER, Child, Event, EventPayload, LastEventSummary

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Could not save the event."


class EventCreationError(Exception):
    """Aggregate failure of a fan-out write. Nothing was persisted."""

    reason = "transaction_failed"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(SAVE_FAILED_MESSAGE)
        self.detail = detail


class InvalidEventPayload(EventCreationError):
    reason = "invalid_payload"


class ChildNotFound(EventCreationError):
    reason = "child_not_found"


class EventNotFound(LookupError):
    pass


class EventAccessDenied(PermissionError):
    pass


def validate_payload(payload: Union[BaseModel, Mapping[str, Any]]) -> EventPayload:
    """Check that ``details`` has exactly the shape registered for ``category``."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        raise InvalidEventPayload("payload must be a mapping")
    data = dict(payload)
    if isinstance(data.get("category"), Enum):
        data["category"] = data["category"].value
    try:
        return EVENT_PAYLOAD_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise InvalidEventPayload(str(exc)) from exc


def _normalize_child_ids(child_ids: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(child_ids, str):
        child_ids = [child_ids]
    ordered = list(dict.fromkeys(cid.strip() for cid in child_ids if cid and cid.strip()))
    if not ordered:
        raise InvalidEventPayload("at least one child id is required")
    return ordered


def build_event(payload: EventPayload, *, child_id: str, staff_id: str, now: datetime) -> Event:
    """Materialize the event document for one target child."""
    return EVENT_ADAPTER.validate_python(
        {
            "id": str(uuid4()),
            "child_id": child_id,
            "staff_id": staff_id,
            "category": payload.category,
            "event_time": payload.event_time,
            "details": payload.details.model_dump(exclude_none=True),
            "created_at": now,
            "created_by": staff_id,
            "updated_at": now,
            "updated_by": staff_id,
        }
    )


def summarize_event(event: Event) -> LastEventSummary:
    return LastEventSummary(
        event_id=event.id,
        category=event.category,
        event_time=event.event_time,
        description=describe_event(event.category, event.details),
    )


def create_events(
    payload: Union[BaseModel, Mapping[str, Any]],
    child_ids: Union[str, Iterable[str]],
    staff_id: str,
) -> None:
    """Create one event per child and refresh each child's summary atomically.

    Returns normally on success. Raises ``EventCreationError`` (or one of its
    subclasses) when nothing was written.
    """
    validated = validate_payload(payload)
    targets = _normalize_child_ids(child_ids)
    if not staff_id:
        raise InvalidEventPayload("staff id is required")

    now = db.utcnow()
    try:
        with db.transaction() as conn:
            for child_id in targets:
                child = db.fetch_child(conn, child_id)
                if child is None or child.deleted_at is not None:
                    raise ChildNotFound(f"child {child_id} does not exist")
                event = build_event(validated, child_id=child_id, staff_id=staff_id, now=now)
                db.insert_event_document(conn, event.model_dump(exclude_none=True))
                db.save_child(
                    conn,
                    child.model_copy(
                        update={
                            "last_event": summarize_event(event),
                            "updated_at": now,
                            "updated_by": staff_id,
                        }
                    ),
                )
    except EventCreationError as exc:
        logger.warning(
            "event fan-out aborted",
            extra={"reason": exc.reason, "detail": exc.detail, "child_count": len(targets)},
        )
        raise
    except Exception as exc:
        logger.exception(
            "event fan-out rejected",
            extra={"category": validated.category, "child_count": len(targets)},
        )
        raise EventCreationError(str(exc)) from exc

    logger.info(
        "events created",
        extra={"category": validated.category, "child_count": len(targets), "staff_id": staff_id},
    )


def soft_delete_event(
    event_id: str,
    user_id: str,
    *,
    authorize: Optional[Callable[[Child], bool]] = None,
) -> None:
    """Mark an event deleted; re-derive the child's summary if it pointed at it.

    ``authorize`` is checked against the event's child inside the same
    transaction; a refusal raises ``EventAccessDenied`` and writes nothing.
    """
    with db.transaction() as conn:
        document = db.fetch_event_document(conn, event_id)
        if document is None or document.get("deleted_at"):
            raise EventNotFound(event_id)

        child = db.fetch_child(conn, document["child_id"])
        if authorize is not None and (child is None or not authorize(child)):
            raise EventAccessDenied(event_id)

        now = db.utcnow()
        document.update(deleted_at=now, deleted_by=user_id, updated_at=now, updated_by=user_id)
        db.replace_event_document(conn, document)

        if child is not None and child.last_event is not None and child.last_event.event_id == event_id:
            _refresh_summary(conn, child, now=now, user_id=user_id)

    logger.info("event deleted", extra={"event_id": event_id, "user_id": user_id})


def _refresh_summary(conn, child: Child, *, now: datetime, user_id: str) -> None:
    summary: Optional[LastEventSummary] = None
    latest = db.latest_event_document(conn, child.id)
    if latest is not None:
        try:
            summary = summarize_event(EVENT_ADAPTER.validate_python(latest))
        except ValidationError:
            logger.warning(
                "latest event is malformed; clearing summary",
                extra={"child_id": child.id, "event_id": latest.get("id")},
            )
    db.save_child(
        conn,
        child.model_copy(update={"last_event": summary, "updated_at": now, "updated_by": user_id}),
    )


def day_bounds(day: date) -> Tuple[str, str]:
    """Storage-format [start, end) bounds of a calendar day in the configured zone."""
    start = datetime.combine(day, time.min, tzinfo=CONFIG.tzinfo)
    end = start + timedelta(days=1)
    return db.to_storage_time(start), db.to_storage_time(end)


def get_events_by_child(child_id: str, day: Optional[date] = None) -> List[Event]:
    """Live events for a child, newest first; malformed documents are skipped."""
    start, end = day_bounds(day) if day is not None else (None, None)
    events: List[Event] = []
    for document in db.list_event_documents(child_id, start, end):
        try:
            events.append(EVENT_ADAPTER.validate_python(document))
        except ValidationError:
            logger.warning(
                "skipping malformed event document",
                extra={"event_id": document.get("id"), "child_id": child_id},
            )
    return events

from datetime import date
from typing import Any, Dict, List, Optional

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..db import get_live_child
from ..deps import can_view_child, require_teacher, require_user
from ..event_registry import list_event_configs
from ..events import (
    ChildNotFound,
    EventAccessDenied,
    EventCreationError,
    EventNotFound,
    InvalidEventPayload,
    create_events,
    get_events_by_child,
    soft_delete_event,
)
from ..schemas import Event, User

router = APIRouter(prefix="/api/v1", tags=["events"])
logger = logging.getLogger(__name__)


class CreateEventsPayload(BaseModel):
    child_ids: List[str] = Field(..., min_length=1, description="Children receiving the event")
    payload: Dict[str, Any] = Field(..., description="category, event_time and details")


class OperationResult(BaseModel):
    success: bool


def _status_for(exc: EventCreationError) -> int:
    if isinstance(exc, InvalidEventPayload):
        return 422
    if isinstance(exc, ChildNotFound):
        return 409
    return 500


@router.get("/event-categories")
async def list_event_categories(user: User = Depends(require_user)) -> List[Dict[str, Any]]:
    return [config.to_public() for config in list_event_configs()]


@router.post("/events", response_model=OperationResult, status_code=201)
async def create_events_endpoint(
    body: CreateEventsPayload,
    user: User = Depends(require_teacher),
) -> OperationResult:
    """Record one event for every selected child, all or nothing."""

    logger.info(
        "event fan-out request",
        extra={"method": "POST", "path": "/api/v1/events", "child_count": len(body.child_ids)},
    )
    try:
        create_events(body.payload, body.child_ids, user.uid)
    except EventCreationError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return OperationResult(success=True)


@router.delete("/events/{event_id}", response_model=OperationResult)
async def delete_event_endpoint(event_id: str, user: User = Depends(require_teacher)) -> OperationResult:
    try:
        soft_delete_event(event_id, user.uid, authorize=lambda child: can_view_child(user, child))
    except EventNotFound as exc:
        raise HTTPException(status_code=404, detail="Event not found.") from exc
    except EventAccessDenied as exc:
        raise HTTPException(status_code=403, detail="Child access denied.") from exc
    return OperationResult(success=True)


@router.get("/children/{child_id}/events", response_model=List[Event])
async def list_child_events(
    child_id: str,
    day: Optional[date] = Query(None, alias="date", description="Calendar day (YYYY-MM-DD)"),
    user: User = Depends(require_user),
) -> List[Event]:
    """Return a child's timeline, newest first."""

    child = get_live_child(child_id)
    if child is None:
        raise HTTPException(status_code=404, detail="Child not found.")
    if not can_view_child(user, child):
        raise HTTPException(status_code=403, detail="Child access denied.")

    events = get_events_by_child(child_id, day)
    logger.info(
        "timeline events query",
        extra={"child_id": child_id, "date": day.isoformat() if day else None, "count": len(events)},
    )
    return events

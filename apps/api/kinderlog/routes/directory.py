"""Pass-through reads for children and classrooms, plus session/navigation state."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..db import get_classroom, get_live_child, list_children_by_classroom
from ..deps import can_view_child, get_session_state, require_user
from ..guard import GuardDecision, evaluate_access, landing_path_for, required_role_for
from ..schemas import Child, Classroom, User, UserRole
from ..session import SessionState, SessionStatus

router = APIRouter(prefix="/api/v1", tags=["directory"])


class SessionOut(BaseModel):
    status: SessionStatus
    user: Optional[User] = None
    landing_path: Optional[str] = None


def _can_view_classroom(user: User, classroom_id: str) -> bool:
    if user.has_role(UserRole.ADMIN):
        return True
    return (
        user.has_role(UserRole.TEACHER)
        and user.teacher_profile is not None
        and classroom_id in user.teacher_profile.classroom_ids
    )


@router.get("/session", response_model=SessionOut)
async def read_session(state: SessionState = Depends(get_session_state)) -> SessionOut:
    landing = landing_path_for(state.user.roles) if state.user else None
    return SessionOut(status=state.status, user=state.user, landing_path=landing)


@router.get("/navigation")
async def navigate(
    path: str = Query(..., description="Screen path being opened"),
    state: SessionState = Depends(get_session_state),
) -> GuardDecision:
    required_role = required_role_for(path)
    if required_role is None:
        raise HTTPException(status_code=404, detail="Unknown screen.")
    return evaluate_access(state, required_role)


@router.get("/children/{child_id}", response_model=Child)
async def read_child(child_id: str, user: User = Depends(require_user)) -> Child:
    child = get_live_child(child_id)
    if child is None:
        raise HTTPException(status_code=404, detail="Child not found.")
    if not can_view_child(user, child):
        raise HTTPException(status_code=403, detail="Child access denied.")
    return child


@router.get("/classrooms/{classroom_id}", response_model=Classroom)
async def read_classroom(classroom_id: str, user: User = Depends(require_user)) -> Classroom:
    if not _can_view_classroom(user, classroom_id):
        raise HTTPException(status_code=403, detail="Classroom access denied.")
    classroom = get_classroom(classroom_id)
    if classroom is None:
        raise HTTPException(status_code=404, detail="Classroom not found.")
    return classroom


@router.get("/classrooms/{classroom_id}/children", response_model=List[Child])
async def read_classroom_children(classroom_id: str, user: User = Depends(require_user)) -> List[Child]:
    if not _can_view_classroom(user, classroom_id):
        raise HTTPException(status_code=403, detail="Classroom access denied.")
    return list_children_by_classroom(classroom_id)

"""FastAPI dependencies that bind the session manager and guard to requests."""
from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException

from .guard import GuardOutcome, evaluate_access
from .schemas import Child, User, UserRole
from .session import SessionState, identity_from_authorization, resolve_session


def get_session_state(authorization: Optional[str] = Header(None)) -> SessionState:
    # Resolved per request so a role change is visible on the next call.
    return resolve_session(identity_from_authorization(authorization))


def require_role(role: Optional[UserRole]) -> Callable[..., User]:
    def dependency(state: SessionState = Depends(get_session_state)) -> User:
        decision = evaluate_access(state, role)
        if decision.outcome is GuardOutcome.RENDER:
            return state.user
        status_code = 401 if decision.reason == "unauthenticated" else 403
        raise HTTPException(
            status_code=status_code,
            detail={"error": decision.reason, "redirect_to": decision.redirect_to},
        )

    return dependency


require_user = require_role(None)
require_admin = require_role(UserRole.ADMIN)
require_teacher = require_role(UserRole.TEACHER)


def can_view_child(user: User, child: Child) -> bool:
    if user.has_role(UserRole.ADMIN):
        return True
    if user.has_role(UserRole.TEACHER) and user.teacher_profile is not None:
        if child.classroom_id in user.teacher_profile.classroom_ids:
            return True
    if user.has_role(UserRole.PARENT):
        return child.id in user.children_ids or user.uid in child.parent_ids
    return False

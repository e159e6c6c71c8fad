"""Role-based access guard for screens.

``evaluate_access`` is a pure function of the current session value and the
role a screen requires. It never raises: an unauthorized caller resolves to a
redirect. Callers evaluate it on every navigation instead of caching a
decision, since role membership can change between navigations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Union

from .schemas import UserRole
from .session import SessionManager, SessionState, SessionStatus

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/sign-in"

# First match wins for users holding several roles.
LANDING_PATHS = (
    (UserRole.ADMIN, "/admin"),
    (UserRole.TEACHER, "/teacher/events"),
    (UserRole.PARENT, "/guardian/timeline"),
)

SCREENS: Dict[str, UserRole] = {
    "/admin": UserRole.ADMIN,
    "/admin/classrooms": UserRole.ADMIN,
    "/admin/children": UserRole.ADMIN,
    "/admin/teachers": UserRole.ADMIN,
    "/teacher/events": UserRole.TEACHER,
    "/teacher/log": UserRole.TEACHER,
    "/teacher/profile": UserRole.TEACHER,
    "/guardian/timeline": UserRole.PARENT,
    "/guardian/profile": UserRole.PARENT,
}


class GuardOutcome(str, Enum):
    LOADING = "loading"
    REDIRECT = "redirect"
    RENDER = "render"


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    redirect_to: Optional[str] = None
    reason: Optional[str] = None  # unauthenticated | forbidden


def required_role_for(path: str) -> Optional[UserRole]:
    path = path.split("?", 1)[0].split("#", 1)[0]
    return SCREENS.get(path.rstrip("/") or "/")


def landing_path_for(roles: Iterable[Union[UserRole, str]]) -> str:
    held = {UserRole(role) for role in roles}
    for role, path in LANDING_PATHS:
        if role in held:
            return path
    return SIGN_IN_PATH


def evaluate_access(state: SessionState, required_role: Optional[Union[UserRole, str]]) -> GuardDecision:
    if state.status is SessionStatus.LOADING:
        return GuardDecision(GuardOutcome.LOADING)
    if state.status is SessionStatus.UNAUTHENTICATED or state.user is None:
        return GuardDecision(GuardOutcome.REDIRECT, SIGN_IN_PATH, "unauthenticated")
    if required_role is not None and not state.user.has_role(required_role):
        return GuardDecision(GuardOutcome.REDIRECT, landing_path_for(state.user.roles), "forbidden")
    return GuardDecision(GuardOutcome.RENDER)


class RoleGuard:
    """A guard mounted on one screen of an interactive client.

    While mounted it follows the session manager and calls ``navigate`` once
    per resolved redirect; ``render`` re-evaluates against the live session.
    """

    def __init__(
        self,
        sessions: SessionManager,
        required_role: Union[UserRole, str],
        navigate: Callable[[str], None],
    ) -> None:
        self._sessions = sessions
        self._required_role = UserRole(required_role)
        self._navigate = navigate
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_redirect: Optional[GuardDecision] = None

    def mount(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._sessions.subscribe(self._on_session)

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._last_redirect = None

    def render(self) -> GuardDecision:
        return evaluate_access(self._sessions.state, self._required_role)

    def _on_session(self, state: SessionState) -> None:
        decision = evaluate_access(state, self._required_role)
        if decision.outcome is not GuardOutcome.REDIRECT:
            self._last_redirect = None
            return
        if decision == self._last_redirect:
            return
        self._last_redirect = decision
        logger.info(
            "guard redirect",
            extra={"required_role": self._required_role.value, "redirect_to": decision.redirect_to},
        )
        self._navigate(decision.redirect_to)

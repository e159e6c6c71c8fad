"""Session manager: the single owner of "who is logged in".

The identity provider (token issuance, OAuth popups) lives outside this
package. It is consumed through ``IdentityProvider``: a stream of
notifications that carry either an ``Identity`` or ``None``. Each
notification is resolved into the application profile before a new
``SessionState`` is published.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Protocol

import jwt
from jwt import PyJWKClient

from . import db
from .config import CONFIG
from .schemas import User

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus
    user: Optional[User] = None

    @property
    def is_loading(self) -> bool:
        return self.status is SessionStatus.LOADING


LOADING = SessionState(SessionStatus.LOADING)
SIGNED_OUT = SessionState(SessionStatus.UNAUTHENTICATED)

IdentityCallback = Callable[[Optional[Identity]], None]
SessionListener = Callable[[SessionState], None]
ProfileResolver = Callable[[str], Optional[User]]


class IdentityProvider(Protocol):
    def on_identity_changed(self, callback: IdentityCallback) -> Callable[[], None]:
        """Register ``callback``; returns an unsubscribe function."""


class IdentityChannel:
    """In-process identity provider: whoever signs in or out calls ``emit``."""

    def __init__(self) -> None:
        self._callbacks: List[IdentityCallback] = []

    def on_identity_changed(self, callback: IdentityCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, identity: Optional[Identity]) -> None:
        for callback in list(self._callbacks):
            callback(identity)

    def sign_in(self, uid: str, email: Optional[str] = None) -> None:
        self.emit(Identity(uid=uid, email=email))

    def sign_out(self) -> None:
        self.emit(None)


def resolve_session(
    identity: Optional[Identity],
    resolve_profile: ProfileResolver = db.get_user,
) -> SessionState:
    """Turn an identity notification into a fully resolved session value."""
    if identity is None:
        return SIGNED_OUT
    try:
        user = resolve_profile(identity.uid)
    except Exception:
        logger.exception("profile lookup failed", extra={"uid": identity.uid})
        return SIGNED_OUT
    if user is None:
        logger.warning("identity without application profile", extra={"uid": identity.uid})
        return SIGNED_OUT
    return SessionState(SessionStatus.AUTHENTICATED, user)


class SessionManager:
    def __init__(
        self,
        provider: IdentityProvider,
        resolve_profile: ProfileResolver = db.get_user,
    ) -> None:
        self._provider = provider
        self._resolve_profile = resolve_profile
        self._state = LOADING
        self._listeners: List[SessionListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._generation = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._provider.on_identity_changed(self._on_identity)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()
        self._state = LOADING

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener`` and call it with the current state right away."""
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: SessionState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _on_identity(self, identity: Optional[Identity]) -> None:
        self._generation += 1
        generation = self._generation
        if identity is not None:
            self._publish(LOADING)
        state = resolve_session(identity, self._resolve_profile)
        # A newer notification arrived while this one was resolving.
        if generation != self._generation:
            return
        self._publish(state)


# --- bearer tokens -------------------------------------------------------------


@lru_cache
def _jwks_client(url: str) -> PyJWKClient:
    return PyJWKClient(url)


def _decode_token(token: str) -> Dict[str, Any]:
    audience = CONFIG.jwt_audience
    options = {"verify_aud": bool(audience)}
    if CONFIG.jwks_url:
        signing_key = _jwks_client(CONFIG.jwks_url).get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=audience if audience else None,
            options=options,
        )
    return jwt.decode(
        token,
        CONFIG.jwt_secret,
        algorithms=["HS256"],
        audience=audience if audience else None,
        options=options,
    )


def identity_from_authorization(authorization: Optional[str]) -> Optional[Identity]:
    """Verify a ``Bearer`` header; absent or invalid tokens mean no identity."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    try:
        payload = _decode_token(parts[1])
    except jwt.PyJWTError as exc:
        logger.info("rejected bearer token", extra={"error": type(exc).__name__})
        return None
    uid = payload.get("sub")
    if not uid:
        return None
    return Identity(uid=str(uid), email=payload.get("email"))

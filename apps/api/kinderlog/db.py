"""SQLite helpers.

Each collection is a table holding the JSON document in ``data`` plus the
columns the read paths filter or sort on. The store enforces no document
schema; callers validate with the pydantic models in ``schemas``.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from .config import CONFIG
from .schemas import Child, Classroom, TeacherProfile, User, UserRole

_DB_PATH = CONFIG.resolved_database_path
_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

logger = logging.getLogger(__name__)

COLLECTIONS = ("users", "classrooms", "children", "events")


def initialize_db() -> None:
    with sqlite3.connect(_DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT,
                data TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS classrooms (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS children (
                id TEXT PRIMARY KEY,
                classroom_id TEXT,
                data TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                child_id TEXT NOT NULL,
                event_time TEXT NOT NULL,
                created_at TEXT NOT NULL,
                deleted_at TEXT,
                data TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_children_classroom ON children (classroom_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_events_child_time ON events (child_id, event_time)")
        conn.commit()


@contextmanager
def get_connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """All-or-nothing unit of work: commits on clean exit, rolls back on any error."""
    conn = sqlite3.connect(_DB_PATH, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def to_storage_time(value: datetime) -> str:
    """UTC ISO-8601 with fixed precision, so text order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _dump(document: Dict[str, Any]) -> str:
    return json.dumps(document, ensure_ascii=False)


def _load(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return json.loads(row["data"])


def _audit(actor_id: str) -> Dict[str, Any]:
    now = utcnow()
    return {"created_at": now, "created_by": actor_id, "updated_at": now, "updated_by": actor_id}


# --- users ---------------------------------------------------------------------


def create_user(
    *,
    uid: str,
    email: str,
    roles: Iterable[UserRole | str],
    first_name: str = "",
    last_name: str = "",
    children_ids: Optional[List[str]] = None,
    teacher_profile: Optional[TeacherProfile] = None,
    created_by: Optional[str] = None,
) -> User:
    user = User(
        uid=uid,
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        roles=[UserRole(role) for role in roles],
        children_ids=children_ids or [],
        teacher_profile=teacher_profile,
        **_audit(created_by or uid),
    )
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO users (id, email, data) VALUES (?, ?, ?)",
            (user.uid, user.email, _dump(user.model_dump(mode="json"))),
        )
        conn.commit()
    return user


def get_user(uid: str) -> Optional[User]:
    with get_connection() as conn:
        row = conn.execute("SELECT data FROM users WHERE id = ?", (uid,)).fetchone()
    data = _load(row)
    return User.model_validate(data) if data else None


def set_user_roles(uid: str, roles: Iterable[UserRole | str], *, updated_by: str) -> User:
    user = get_user(uid)
    if user is None:
        raise ValueError(f"user {uid} not found")
    updated = user.model_copy(
        update={"roles": [UserRole(role) for role in roles], "updated_at": utcnow(), "updated_by": updated_by}
    )
    with get_connection() as conn:
        conn.execute(
            "UPDATE users SET data = ? WHERE id = ?",
            (_dump(updated.model_dump(mode="json")), uid),
        )
        conn.commit()
    return updated


# --- classrooms ----------------------------------------------------------------


def create_classroom(
    name: str,
    *,
    created_by: str,
    teacher_ids: Optional[List[str]] = None,
    year: Optional[int] = None,
) -> Classroom:
    classroom = Classroom(
        id=str(uuid4()),
        name=name,
        teacher_ids=teacher_ids or [],
        year=year,
        **_audit(created_by),
    )
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO classrooms (id, data) VALUES (?, ?)",
            (classroom.id, _dump(classroom.model_dump(mode="json"))),
        )
        conn.commit()
    return classroom


def get_classroom(classroom_id: str) -> Optional[Classroom]:
    with get_connection() as conn:
        row = conn.execute("SELECT data FROM classrooms WHERE id = ?", (classroom_id,)).fetchone()
    data = _load(row)
    return Classroom.model_validate(data) if data else None


# --- children ------------------------------------------------------------------


def create_child(
    *,
    first_name: str,
    classroom_id: str,
    created_by: str,
    last_name: str = "",
    parent_ids: Optional[List[str]] = None,
) -> Child:
    child = Child(
        id=str(uuid4()),
        first_name=first_name,
        last_name=last_name,
        classroom_id=classroom_id,
        avatar_url=f"https://avatar.vercel.sh/{first_name}.png",
        parent_ids=parent_ids or [],
        last_event=None,
        **_audit(created_by),
    )
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO children (id, classroom_id, data) VALUES (?, ?, ?)",
            (child.id, child.classroom_id, _dump(child.model_dump(mode="json"))),
        )
        conn.commit()
    return child


def fetch_child(conn: sqlite3.Connection, child_id: str) -> Optional[Child]:
    row = conn.execute("SELECT data FROM children WHERE id = ?", (child_id,)).fetchone()
    data = _load(row)
    return Child.model_validate(data) if data else None


def get_child(child_id: str) -> Optional[Child]:
    with get_connection() as conn:
        return fetch_child(conn, child_id)


def get_live_child(child_id: str) -> Optional[Child]:
    """Like ``get_child`` but soft-deleted children read as missing."""
    child = get_child(child_id)
    if child is None or child.deleted_at is not None:
        return None
    return child


def soft_delete_child(child_id: str, *, deleted_by: str) -> Child:
    with transaction() as conn:
        child = fetch_child(conn, child_id)
        if child is None:
            raise ValueError(f"child {child_id} not found")
        now = utcnow()
        deleted = child.model_copy(
            update={"deleted_at": now, "deleted_by": deleted_by, "updated_at": now, "updated_by": deleted_by}
        )
        save_child(conn, deleted)
    return deleted


def list_children_by_classroom(classroom_id: str) -> List[Child]:
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT data FROM children WHERE classroom_id = ?",
            (classroom_id,),
        ).fetchall()
    children: List[Child] = []
    for row in rows:
        try:
            child = Child.model_validate(_load(row))
        except ValidationError:
            logger.warning("skipping malformed child document", extra={"classroom_id": classroom_id})
            continue
        if child.deleted_at is None:
            children.append(child)
    children.sort(key=lambda child: (child.first_name.lower(), child.last_name.lower()))
    return children


def save_child(conn: sqlite3.Connection, child: Child) -> None:
    cursor = conn.execute(
        "UPDATE children SET classroom_id = ?, data = ? WHERE id = ?",
        (child.classroom_id, _dump(child.model_dump(mode="json")), child.id),
    )
    if cursor.rowcount != 1:
        raise sqlite3.IntegrityError(f"child {child.id} vanished during update")


# --- events --------------------------------------------------------------------


def insert_event_document(conn: sqlite3.Connection, document: Dict[str, Any]) -> None:
    conn.execute(
        """
        INSERT INTO events (
            id,
            child_id,
            event_time,
            created_at,
            deleted_at,
            data
        ) VALUES (?, ?, ?, ?, NULL, ?)
        """,
        (
            document["id"],
            document["child_id"],
            to_storage_time(document["event_time"]),
            to_storage_time(document["created_at"]),
            _dump(_jsonable(document)),
        ),
    )


def fetch_event_document(conn: sqlite3.Connection, event_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT data FROM events WHERE id = ?", (event_id,)).fetchone()
    return _load(row)


def replace_event_document(conn: sqlite3.Connection, document: Dict[str, Any]) -> None:
    deleted_at = document.get("deleted_at")
    conn.execute(
        "UPDATE events SET deleted_at = ?, data = ? WHERE id = ?",
        (
            to_storage_time(deleted_at) if deleted_at else None,
            _dump(_jsonable(document)),
            document["id"],
        ),
    )


def latest_event_document(conn: sqlite3.Connection, child_id: str) -> Optional[Dict[str, Any]]:
    """Most recently written live event for a child."""
    row = conn.execute(
        """
        SELECT data
        FROM events
        WHERE child_id = ?
          AND deleted_at IS NULL
        ORDER BY created_at DESC, rowid DESC
        LIMIT 1
        """,
        (child_id,),
    ).fetchone()
    return _load(row)


def list_event_documents(
    child_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        query = """
            SELECT data
            FROM events
            WHERE child_id = ?
              AND deleted_at IS NULL
        """
        params: list = [child_id]
        if start is not None:
            query += "\n              AND event_time >= ?"
            params.append(start)
        if end is not None:
            query += "\n              AND event_time < ?"
            params.append(end)
        query += "\n            ORDER BY event_time DESC, created_at DESC"
        rows = conn.execute(query, tuple(params)).fetchall()
    return [json.loads(row["data"]) for row in rows]


def count_events(child_id: Optional[str] = None) -> int:
    with get_connection() as conn:
        if child_id is None:
            row = conn.execute("SELECT COUNT(*) FROM events").fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM events WHERE child_id = ?", (child_id,)).fetchone()
    return int(row[0])


def _jsonable(document: Dict[str, Any]) -> Dict[str, Any]:
    def convert(value: Any) -> Any:
        if isinstance(value, datetime):
            return to_storage_time(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {key: convert(item) for key, item in value.items()}
        if isinstance(value, list):
            return [convert(item) for item in value]
        return value

    return convert(document)

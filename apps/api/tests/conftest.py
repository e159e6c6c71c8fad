from __future__ import annotations

from dataclasses import dataclass

import pytest

from kinderlog import db
from kinderlog.config import CONFIG
from kinderlog.schemas import Child, Classroom, TeacherProfile, User


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(db, "_DB_PATH", tmp_path / "kinderlog.db")
    monkeypatch.setattr(CONFIG, "timezone", "UTC")
    monkeypatch.setattr(CONFIG, "jwks_url", None)
    db.initialize_db()
    yield


@dataclass
class Daycare:
    admin: User
    teacher: User
    parent: User
    classroom: Classroom
    other_classroom: Classroom
    child_a: Child
    child_b: Child
    outsider: Child


@pytest.fixture
def daycare() -> Daycare:
    admin = db.create_user(uid="admin-1", email="director@example.com", roles=["admin"], first_name="Dora")
    classroom = db.create_classroom("Sala Roja", created_by=admin.uid, year=2024)
    other_classroom = db.create_classroom("Sala Azul", created_by=admin.uid, year=2024)
    teacher = db.create_user(
        uid="teacher-1",
        email="maestra@example.com",
        roles=["teacher"],
        first_name="Tina",
        teacher_profile=TeacherProfile(classroom_ids=[classroom.id]),
        created_by=admin.uid,
    )
    child_a = db.create_child(first_name="Ana", classroom_id=classroom.id, created_by=admin.uid)
    child_b = db.create_child(first_name="Bruno", classroom_id=classroom.id, created_by=admin.uid)
    outsider = db.create_child(first_name="Olga", classroom_id=other_classroom.id, created_by=admin.uid)
    parent = db.create_user(
        uid="parent-1",
        email="papa@example.com",
        roles=["parent"],
        first_name="Pablo",
        children_ids=[child_a.id],
        created_by=admin.uid,
    )
    return Daycare(
        admin=admin,
        teacher=teacher,
        parent=parent,
        classroom=classroom,
        other_classroom=other_classroom,
        child_a=child_a,
        child_b=child_b,
        outsider=outsider,
    )

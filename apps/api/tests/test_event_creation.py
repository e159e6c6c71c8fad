from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, timedelta, timezone

import pytest

from kinderlog import db
from kinderlog.events import (
    ChildNotFound,
    EventAccessDenied,
    EventCreationError,
    EventNotFound,
    InvalidEventPayload,
    create_events,
    get_events_by_child,
    soft_delete_event,
)

T = datetime(2024, 6, 2, 15, 0, tzinfo=timezone.utc)


def diaper(kind: str = "poo", at: datetime = T) -> dict:
    return {"category": "diaper", "event_time": at, "details": {"type": kind}}


def test_group_diaper_event_fans_out_per_child(daycare) -> None:
    a, b = daycare.child_a, daycare.child_b
    staff = daycare.teacher.uid

    create_events(diaper("poo"), [a.id, b.id], staff)

    (event_a,) = get_events_by_child(a.id)
    (event_b,) = get_events_by_child(b.id)
    for event, child in ((event_a, a), (event_b, b)):
        assert event.child_id == child.id
        assert event.category == "diaper"
        assert event.details.type == "poo"
        assert event.event_time == T
        assert event.staff_id == staff
        assert event.created_by == staff
        assert event.updated_by == staff
        assert event.deleted_at is None
    assert event_a.id != event_b.id

    summary_a = db.get_child(a.id).last_event
    summary_b = db.get_child(b.id).last_event
    assert "poo" in summary_a.description
    assert "poo" in summary_b.description
    assert summary_a.event_id == event_a.id
    assert summary_b.event_id == event_b.id
    assert summary_a.event_time == event_a.event_time
    assert summary_a.category == event_a.category


def test_mid_transaction_failure_writes_nothing(daycare, monkeypatch: pytest.MonkeyPatch) -> None:
    original_save_child = db.save_child
    calls = {"count": 0}

    def flaky_save_child(conn, child):
        calls["count"] += 1
        if calls["count"] == 2:
            raise sqlite3.OperationalError("disk I/O error")
        return original_save_child(conn, child)

    monkeypatch.setattr(db, "save_child", flaky_save_child)

    with pytest.raises(EventCreationError) as excinfo:
        create_events(diaper(), [daycare.child_a.id, daycare.child_b.id], daycare.teacher.uid)

    assert excinfo.value.reason == "transaction_failed"
    assert str(excinfo.value) == "Could not save the event."
    assert calls["count"] == 2
    assert db.count_events() == 0
    assert db.get_child(daycare.child_a.id).last_event is None
    assert db.get_child(daycare.child_b.id).last_event is None


def test_missing_child_aborts_the_whole_group(daycare) -> None:
    with pytest.raises(ChildNotFound):
        create_events(diaper(), [daycare.child_a.id, "no-such-child"], daycare.teacher.uid)

    assert db.count_events() == 0
    assert db.get_child(daycare.child_a.id).last_event is None


def test_malformed_payload_is_rejected_before_any_write(daycare, monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_transaction():
        raise AssertionError("transaction must not be opened")

    monkeypatch.setattr(db, "transaction", fail_transaction)

    with pytest.raises(InvalidEventPayload):
        create_events({"category": "medicine", "event_time": T, "details": {"name": "Paracetamol"}}, [daycare.child_a.id], "t")
    with pytest.raises(InvalidEventPayload):
        create_events({"category": "food", "event_time": T, "details": {"type": "pee"}}, [daycare.child_a.id], "t")
    with pytest.raises(InvalidEventPayload):
        create_events(diaper(), [], daycare.teacher.uid)
    with pytest.raises(InvalidEventPayload):
        create_events(diaper(), [daycare.child_a.id], "")


def test_caller_supplied_audit_fields_are_ignored(daycare) -> None:
    payload = {**diaper(), "created_by": "mallory", "staff_id": "mallory"}
    create_events(payload, [daycare.child_a.id], daycare.teacher.uid)

    (event,) = get_events_by_child(daycare.child_a.id)
    assert event.staff_id == daycare.teacher.uid
    assert event.created_by == daycare.teacher.uid


def test_duplicate_child_ids_create_one_event_each(daycare) -> None:
    create_events(diaper(), [daycare.child_a.id, daycare.child_a.id], daycare.teacher.uid)
    assert db.count_events(daycare.child_a.id) == 1


def test_newest_write_wins_the_summary(daycare) -> None:
    child_id = daycare.child_a.id
    create_events(diaper("pee", at=T), [child_id], daycare.teacher.uid)
    create_events(
        {"category": "food", "event_time": T - timedelta(hours=3), "details": {"meal_type": "breakfast"}},
        [child_id],
        daycare.teacher.uid,
    )

    summary = db.get_child(child_id).last_event
    assert summary.category == "food"
    assert summary.description == "Ate breakfast."
    assert summary.event_time == T - timedelta(hours=3)


def test_summaries_follow_each_childs_own_history(daycare) -> None:
    a, b = daycare.child_a.id, daycare.child_b.id
    create_events(diaper("pee"), [a], daycare.teacher.uid)
    create_events(
        {"category": "medicine", "event_time": T + timedelta(minutes=10), "details": {"name": "Ibuprofeno", "dose": "2ml"}},
        [b],
        daycare.teacher.uid,
    )

    assert db.get_child(a).last_event.description == "Diaper change (pee)."
    assert db.get_child(b).last_event.description == "Took Ibuprofeno (2ml)."


def test_timeline_is_newest_first_and_filters_by_day(daycare) -> None:
    child_id = daycare.child_a.id
    yesterday = T - timedelta(days=1)
    create_events(diaper("pee", at=T - timedelta(hours=2)), [child_id], daycare.teacher.uid)
    create_events(diaper("both", at=T), [child_id], daycare.teacher.uid)
    create_events(diaper("poo", at=yesterday), [child_id], daycare.teacher.uid)

    assert [event.details.type for event in get_events_by_child(child_id)] == ["both", "pee", "poo"]
    assert [event.details.type for event in get_events_by_child(child_id, date(2024, 6, 2))] == ["both", "pee"]
    assert [event.details.type for event in get_events_by_child(child_id, date(2024, 6, 1))] == ["poo"]


def test_malformed_documents_are_skipped_on_read(daycare) -> None:
    child_id = daycare.child_a.id
    create_events(diaper(), [child_id], daycare.teacher.uid)
    stored = db.to_storage_time(T + timedelta(hours=1))
    with db.get_connection() as conn:
        conn.execute(
            "INSERT INTO events (id, child_id, event_time, created_at, deleted_at, data) VALUES (?, ?, ?, ?, NULL, ?)",
            (
                "corrupt",
                child_id,
                stored,
                stored,
                json.dumps({"id": "corrupt", "child_id": child_id, "category": "diaper", "details": {"type": "purple"}}),
            ),
        )
        conn.commit()

    events = get_events_by_child(child_id)
    assert [event.details.type for event in events] == ["poo"]


def test_soft_delete_recomputes_the_summary(daycare) -> None:
    child_id = daycare.child_a.id
    create_events(diaper("pee"), [child_id], daycare.teacher.uid)
    create_events(diaper("poo", at=T + timedelta(hours=1)), [child_id], daycare.teacher.uid)
    latest = db.get_child(child_id).last_event

    soft_delete_event(latest.event_id, daycare.teacher.uid)

    remaining = get_events_by_child(child_id)
    assert [event.details.type for event in remaining] == ["pee"]
    summary = db.get_child(child_id).last_event
    assert summary.event_id == remaining[0].id
    assert summary.description == "Diaper change (pee)."

    soft_delete_event(remaining[0].id, daycare.teacher.uid)
    assert db.get_child(child_id).last_event is None

    with pytest.raises(EventNotFound):
        soft_delete_event(remaining[0].id, daycare.teacher.uid)


def test_unexpected_errors_surface_as_save_failures(daycare, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_save_child(conn, child):
        raise RuntimeError("serializer exploded")

    monkeypatch.setattr(db, "save_child", broken_save_child)

    with pytest.raises(EventCreationError) as excinfo:
        create_events(diaper(), [daycare.child_a.id], daycare.teacher.uid)

    assert excinfo.value.reason == "transaction_failed"
    assert str(excinfo.value) == "Could not save the event."
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert db.count_events() == 0


def test_soft_deleted_child_cannot_receive_events(daycare) -> None:
    db.soft_delete_child(daycare.child_b.id, deleted_by=daycare.admin.uid)

    with pytest.raises(ChildNotFound):
        create_events(diaper(), [daycare.child_a.id, daycare.child_b.id], daycare.teacher.uid)
    assert db.count_events() == 0


def test_refused_delete_leaves_event_and_summary(daycare) -> None:
    child_id = daycare.outsider.id
    create_events(diaper(), [child_id], daycare.admin.uid)
    summary = db.get_child(child_id).last_event

    with pytest.raises(EventAccessDenied):
        soft_delete_event(summary.event_id, daycare.teacher.uid, authorize=lambda child: False)

    assert [event.id for event in get_events_by_child(child_id)] == [summary.event_id]
    assert db.get_child(child_id).last_event == summary

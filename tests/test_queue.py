from __future__ import annotations

from datetime import date, datetime

import pytest

from constituency_desk.errors import Conflict, InvalidState, ValidationFailed
from constituency_desk.models.appointment import AppointmentStatus
from constituency_desk.models.common import Priority
from constituency_desk.models.visit import Visit, VisitStatus
from constituency_desk.services import queue_engine, scheduler

TODAY = date(2030, 3, 4)


def at(hh: int, mm: int = 0) -> datetime:
    return datetime(2030, 3, 4, hh, mm)


def _appointment(session, visitor, staff, start, priority=Priority.NORMAL):
    return scheduler.schedule(
        session,
        title="Grievance",
        visitor_id=visitor.id,
        staff_user_id=staff.id,
        scheduled_date=TODAY,
        start_time=start,
        priority=priority,
    )


def test_single_active_visit_per_visitor(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]

    queue_engine.check_in(session, visitor_id=visitor.id, staff_user_id=staff.id, now=at(10))
    session.refresh(visitor)
    assert visitor.visit_count == 1
    assert visitor.last_visit == at(10)

    with pytest.raises(Conflict, match="already has an active visit"):
        queue_engine.check_in(session, visitor_id=visitor.id, staff_user_id=staff.id, now=at(10, 5))

    session.refresh(visitor)
    assert visitor.visit_count == 1


def test_check_out_twice_is_rejected(session, users, make_visitor):
    visit = queue_engine.check_in(
        session, visitor_id=make_visitor().id, staff_user_id=users["staff"].id, now=at(10)
    )
    done = queue_engine.check_out(session, visit.id, satisfaction=4, notes="Sorted", now=at(10, 20))
    assert done.status == VisitStatus.COMPLETED
    assert done.check_out_time == at(10, 20)
    assert done.satisfaction == 4

    with pytest.raises(InvalidState, match="not in progress"):
        queue_engine.check_out(session, visit.id, now=at(11))

    session.refresh(done)
    assert done.check_out_time == at(10, 20)


def test_visitor_can_return_after_checkout(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]
    first = queue_engine.check_in(session, visitor_id=visitor.id, staff_user_id=staff.id, now=at(9))
    queue_engine.cancel(session, first.id, now=at(9, 10))

    second = queue_engine.check_in(session, visitor_id=visitor.id, staff_user_id=staff.id, now=at(11))
    assert second.status == VisitStatus.IN_PROGRESS
    session.refresh(visitor)
    assert visitor.visit_count == 2


def test_appointment_follows_visit(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]
    appt = _appointment(session, visitor, staff, "10:00")

    visit = queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(10, 10)
    )
    session.refresh(appt)
    assert appt.status == AppointmentStatus.CONFIRMED

    queue_engine.check_out(session, visit.id, now=at(10, 40))
    session.refresh(appt)
    assert appt.status == AppointmentStatus.COMPLETED


def test_cancel_marks_appointment_cancelled(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]
    appt = _appointment(session, visitor, staff, "10:00")
    visit = queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(10)
    )

    queue_engine.cancel(session, visit.id, notes="Left early", now=at(10, 5))
    session.refresh(appt)
    assert appt.status == AppointmentStatus.CANCELLED
    assert session.get(Visit, visit.id).notes == "Left early"


def test_satisfaction_range(session, users, make_visitor):
    visit = queue_engine.check_in(
        session, visitor_id=make_visitor().id, staff_user_id=users["staff"].id, now=at(10)
    )
    with pytest.raises(ValidationFailed):
        queue_engine.check_out(session, visit.id, satisfaction=6, now=at(10, 30))
    assert session.get(Visit, visit.id).status == VisitStatus.IN_PROGRESS


def test_update_visit_routes_status_through_transitions(session, users, make_visitor):
    visit = queue_engine.check_in(
        session, visitor_id=make_visitor().id, staff_user_id=users["staff"].id, now=at(10)
    )
    patched = queue_engine.update_visit(session, visit.id, {"purpose": "Ration card"}, now=at(10, 1))
    assert patched.purpose == "Ration card"
    assert patched.status == VisitStatus.IN_PROGRESS

    closed = queue_engine.update_visit(session, visit.id, {"status": VisitStatus.COMPLETED}, now=at(10, 30))
    assert closed.status == VisitStatus.COMPLETED
    assert closed.check_out_time == at(10, 30)

    with pytest.raises(InvalidState):
        queue_engine.update_visit(session, visit.id, {"status": VisitStatus.IN_PROGRESS})


def test_update_visit_closes_and_patches_together(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]
    appt = _appointment(session, visitor, staff, "10:00")
    visit = queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(10)
    )

    closed = queue_engine.update_visit(
        session,
        visit.id,
        {"status": VisitStatus.CANCELLED, "purpose": "Pension papers", "satisfaction": 2},
        now=at(10, 15),
    )
    assert closed.status == VisitStatus.CANCELLED
    assert closed.purpose == "Pension papers"
    assert closed.satisfaction == 2
    assert closed.check_out_time == at(10, 15)
    session.refresh(appt)
    assert appt.status == AppointmentStatus.CANCELLED

    with pytest.raises(InvalidState):
        queue_engine.update_visit(
            session, visit.id, {"status": VisitStatus.COMPLETED, "purpose": "Changed"}, now=at(11)
        )
    session.refresh(closed)
    assert closed.purpose == "Pension papers"


def test_check_in_cannot_revive_rebooked_slot(session, users, make_visitor):
    first_visitor = make_visitor()
    second_visitor = make_visitor()
    staff = users["staff"]

    cancelled = _appointment(session, first_visitor, staff, "10:00")
    scheduler.reschedule(session, cancelled.id, {"status": AppointmentStatus.CANCELLED})
    rebooked = _appointment(session, second_visitor, staff, "10:00")

    with pytest.raises(Conflict) as excinfo:
        queue_engine.check_in(
            session,
            visitor_id=first_visitor.id,
            staff_user_id=staff.id,
            appointment_id=cancelled.id,
            now=at(10),
        )
    assert excinfo.value.details == {"conflicting_appointment_ids": [rebooked.id]}

    session.refresh(cancelled)
    session.refresh(first_visitor)
    assert cancelled.status == AppointmentStatus.CANCELLED
    assert first_visitor.visit_count == 0
    assert queue_engine._find_open_visit(session, first_visitor.id) is None


def test_check_in_revives_cancelled_appointment_when_slot_free(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]
    appt = _appointment(session, visitor, staff, "11:00")
    scheduler.reschedule(session, appt.id, {"status": AppointmentStatus.NO_SHOW})

    queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(11, 20)
    )
    session.refresh(appt)
    assert appt.status == AppointmentStatus.CONFIRMED


def test_check_in_leaves_completed_appointment_alone(session, users, make_visitor):
    visitor = make_visitor()
    staff = users["staff"]
    appt = _appointment(session, visitor, staff, "09:00")
    first = queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(9)
    )
    queue_engine.check_out(session, first.id, now=at(9, 30))

    queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(12)
    )
    session.refresh(appt)
    assert appt.status == AppointmentStatus.COMPLETED


def test_order_queue_priority_then_arrival():
    walk_in = Visit(id=1, visitor_id=1, user_id=1, check_in_time=at(9, 0))
    urgent = Visit(id=2, visitor_id=2, user_id=1, appointment_id=10, check_in_time=at(9, 30))
    low = Visit(id=3, visitor_id=3, user_id=1, appointment_id=11, check_in_time=at(8, 0))
    normal_late = Visit(id=4, visitor_id=4, user_id=1, check_in_time=at(9, 45))

    ordered = queue_engine.order_queue(
        [walk_in, urgent, low, normal_late],
        {10: Priority.URGENT, 11: Priority.LOW},
    )
    assert [v.id for v in ordered] == [2, 1, 4, 3]


def test_averages_skip_walk_ins(session, users, make_visitor):
    staff = users["staff"]
    v1, v2 = make_visitor(), make_visitor()
    appt = _appointment(session, v1, staff, "10:00")

    a = queue_engine.check_in(session, visitor_id=v1.id, staff_user_id=staff.id, appointment_id=appt.id, now=at(10, 10))
    b = queue_engine.check_in(session, visitor_id=v2.id, staff_user_id=staff.id, now=at(10, 0))
    queue_engine.check_out(session, a.id, now=at(10, 40))
    queue_engine.check_out(session, b.id, now=at(10, 20))

    snap = queue_engine.queue_snapshot(session, now=at(12))
    assert snap.stats.total_completed_today == 2
    assert snap.stats.average_wait_minutes == 10.0
    assert snap.stats.average_visit_minutes == 25.0


def test_snapshot_lists_waiting_appointments(session, users, make_visitor):
    staff = users["staff"]
    v_urgent, v_normal, v_in = make_visitor(), make_visitor(), make_visitor()
    _appointment(session, v_normal, staff, "11:00")
    _appointment(session, v_urgent, staff, "12:00", priority=Priority.URGENT)
    seen = _appointment(session, v_in, staff, "09:00")
    queue_engine.check_in(session, visitor_id=v_in.id, staff_user_id=staff.id, appointment_id=seen.id, now=at(9, 5))

    snap = queue_engine.queue_snapshot(session, now=at(9, 30))
    assert snap.stats.total_active == 1
    assert [e.appointment.visitor_id for e in snap.scheduled_today] == [v_urgent.id, v_normal.id]
    # No completed visits yet, so no basis for a wait estimate.
    assert all(e.estimated_wait_minutes == 0 for e in snap.scheduled_today)


def test_queue_endpoint_and_actions(client, auth, users, make_visitor):
    visitor = make_visitor()
    res = client.post(
        "/visits",
        json={"visitor_id": visitor.id, "user_id": users["staff"].id, "purpose": "Pension"},
        headers=auth(),
    )
    assert res.status_code == 201
    visit_id = res.json()["visit"]["id"]

    again = client.post("/visits", json={"visitor_id": visitor.id, "user_id": users["staff"].id}, headers=auth())
    assert again.status_code == 409
    assert again.json()["error"] == "Visitor already has an active visit"

    queue = client.get("/queue", headers=auth("viewer")).json()
    assert queue["queue_stats"]["total_active"] == 1
    assert queue["active_visits"][0]["id"] == visit_id

    bad = client.post("/queue/actions?action=teleport", json={"visit_id": visit_id}, headers=auth())
    assert bad.status_code == 400

    done = client.post(
        "/queue/actions?action=checkout",
        json={"visit_id": visit_id, "satisfaction": 5},
        headers=auth(),
    )
    assert done.status_code == 200
    assert done.json()["visit"]["status"] == "COMPLETED"

    twice = client.post("/queue/actions?action=checkout", json={"visit_id": visit_id}, headers=auth())
    assert twice.status_code == 400
    assert twice.json()["error"] == "Visit is not in progress"

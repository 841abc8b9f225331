from __future__ import annotations

from datetime import date, datetime, time

import pytest

from constituency_desk.errors import Conflict, NotFound, ValidationFailed
from constituency_desk.models.appointment import Appointment, AppointmentStatus
from constituency_desk.services import scheduler

DAY = date(2030, 1, 7)


def _book(session, visitor, staff, start, duration=30, **kw):
    return scheduler.schedule(
        session,
        title="Meeting",
        visitor_id=visitor.id,
        staff_user_id=staff.id,
        scheduled_date=DAY,
        start_time=start,
        duration=duration,
        **kw,
    )


def test_intervals_overlap_is_half_open():
    a = datetime(2030, 1, 7, 10, 0)
    b = datetime(2030, 1, 7, 10, 30)
    c = datetime(2030, 1, 7, 11, 0)
    assert scheduler.intervals_overlap(a, b, a, c)
    assert not scheduler.intervals_overlap(a, b, b, c)


def test_parse_wall_time_accepts_both_formats():
    assert scheduler.parse_wall_time("09:30") == time(9, 30)
    assert scheduler.parse_wall_time("09:30:15") == time(9, 30, 15)
    with pytest.raises(ValidationFailed):
        scheduler.parse_wall_time("half past nine")


def test_duration_bounds():
    assert scheduler.validate_duration(15) == 15
    with pytest.raises(ValidationFailed):
        scheduler.validate_duration(10)
    with pytest.raises(ValidationFailed):
        scheduler.validate_duration(241)


def test_back_to_back_bookings_and_overlap(session, users, make_visitor):
    staff = users["staff"]
    first = _book(session, make_visitor(), staff, "10:00")
    assert first.end_time == datetime(2030, 1, 7, 10, 30)

    with pytest.raises(Conflict) as exc:
        _book(session, make_visitor(), staff, "10:15")
    assert exc.value.status_code == 409
    assert exc.value.details == {"conflicting_appointment_ids": [first.id]}

    # Touching the end of the first booking is fine.
    second = _book(session, make_visitor(), staff, "10:30")
    assert second.start_time == datetime(2030, 1, 7, 10, 30)


def test_containing_interval_conflicts(session, users, make_visitor):
    staff = users["staff"]
    _book(session, make_visitor(), staff, "10:15", duration=15)
    with pytest.raises(Conflict):
        _book(session, make_visitor(), staff, "10:00", duration=60)


def test_other_staff_member_is_independent(session, users, make_visitor):
    _book(session, make_visitor(), users["staff"], "10:00")
    other = _book(session, make_visitor(), users["politician"], "10:00")
    assert other.id is not None


def test_cancelled_appointments_do_not_block(session, users, make_visitor):
    staff = users["staff"]
    first = _book(session, make_visitor(), staff, "10:00")
    scheduler.reschedule(session, first.id, {"status": AppointmentStatus.CANCELLED})
    again = _book(session, make_visitor(), staff, "10:00")
    assert again.status == AppointmentStatus.PENDING


def test_schedule_unknown_refs(session, users, make_visitor):
    with pytest.raises(NotFound, match="User not found"):
        scheduler.schedule(
            session, title="x", visitor_id=make_visitor().id, staff_user_id=9999,
            scheduled_date=DAY, start_time="10:00",
        )
    with pytest.raises(NotFound, match="Visitor not found"):
        scheduler.schedule(
            session, title="x", visitor_id=9999, staff_user_id=users["staff"].id,
            scheduled_date=DAY, start_time="10:00",
        )


def test_reschedule_excludes_self_and_detects_conflicts(session, users, make_visitor):
    staff = users["staff"]
    first = _book(session, make_visitor(), staff, "10:00")
    second = _book(session, make_visitor(), staff, "11:00")

    # Moving within its own slot is not a conflict with itself.
    moved = scheduler.reschedule(session, first.id, {"start_time": "10:10"})
    assert moved.start_time == datetime(2030, 1, 7, 10, 10)
    assert moved.end_time == datetime(2030, 1, 7, 10, 40)

    with pytest.raises(Conflict):
        scheduler.reschedule(session, second.id, {"start_time": "10:20"})

    session.refresh(second)
    assert second.start_time == datetime(2030, 1, 7, 11, 0)


def test_reactivating_cancelled_appointment_rechecks(session, users, make_visitor):
    staff = users["staff"]
    first = _book(session, make_visitor(), staff, "10:00")
    scheduler.reschedule(session, first.id, {"status": AppointmentStatus.CANCELLED})
    _book(session, make_visitor(), staff, "10:00")

    with pytest.raises(Conflict):
        scheduler.reschedule(session, first.id, {"status": AppointmentStatus.CONFIRMED})


def test_free_slots_skip_booked_and_restart(session, users, make_visitor):
    staff = users["staff"]
    _book(session, make_visitor(), staff, "09:30")
    _book(session, make_visitor(), staff, "13:00", duration=60)

    slots = scheduler.list_available_slots(session, staff.id, DAY)
    starts = [s.start.time() for s in slots]
    assert time(9, 0) in starts
    assert time(9, 30) not in starts
    assert time(13, 0) not in starts
    assert time(13, 30) not in starts
    assert time(14, 0) in starts
    assert starts[-1] == time(16, 30)
    assert len(starts) == 16 - 3


def test_iter_free_slots_is_restartable():
    busy = [
        Appointment(
            title="x", visitor_id=1, user_id=1, scheduled_date=DAY,
            start_time=datetime(2030, 1, 7, 10, 0), end_time=datetime(2030, 1, 7, 11, 0),
            duration=60,
        )
    ]
    gen = scheduler.iter_free_slots(busy, DAY, working_hours=(9, 12), slot_minutes=30)
    first = next(gen)
    assert first.start == datetime(2030, 1, 7, 9, 0)

    again = list(scheduler.iter_free_slots(busy, DAY, working_hours=(9, 12), slot_minutes=30))
    assert [s.start.time() for s in again] == [time(9, 0), time(9, 30), time(11, 0), time(11, 30)]


def test_calendar_view_groups_and_counts(session, users, make_visitor):
    staff = users["staff"]
    _book(session, make_visitor(), staff, "10:00")
    scheduler.schedule(
        session, title="Next day", visitor_id=make_visitor().id, staff_user_id=staff.id,
        scheduled_date=date(2030, 1, 8), start_time="09:00",
    )

    view = scheduler.calendar_view(session, start_date=DAY, end_date=date(2030, 1, 9))
    assert set(view["appointments_by_date"]) == {"2030-01-07", "2030-01-08"}
    assert [d["date"] for d in view["available_slots"]] == ["2030-01-07", "2030-01-08", "2030-01-09"]
    assert len(view["available_slots"][2]["slots"]) == 16
    assert view["summary"]["total_appointments"] == 2

    with pytest.raises(ValidationFailed):
        scheduler.calendar_view(session, start_date=DAY, end_date=date(2030, 6, 1))


def test_delete_appointment_keeps_visit_history(session, users, make_visitor):
    from constituency_desk.models.visit import Visit
    from constituency_desk.services import queue_engine

    visitor = make_visitor()
    appt = _book(session, visitor, users["staff"], "10:00")
    visit = queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=users["staff"].id,
        appointment_id=appt.id, now=datetime(2030, 1, 7, 10, 5),
    )

    scheduler.delete_appointment(session, appt.id)
    assert session.get(Appointment, appt.id) is None
    assert session.get(Visit, visit.id).appointment_id is None

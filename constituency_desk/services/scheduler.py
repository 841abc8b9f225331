from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import and_, or_
from sqlmodel import Session, select

from ..config import settings
from ..database import atomic
from ..errors import Conflict, NotFound, ValidationFailed
from ..models.appointment import (
    INACTIVE_APPOINTMENT_STATUSES,
    MAX_DURATION_MINUTES,
    MIN_DURATION_MINUTES,
    Appointment,
    AppointmentStatus,
)
from ..models.common import Priority, local_now
from ..models.user import User
from ..models.visit import Visit
from ..models.visitor import Visitor

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Scheduling conflict detected. Please choose a different time."

# Longest window the calendar view will expand into per-day slot lists.
MAX_CALENDAR_DAYS = 62


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime


# -------------------------
# Pure helpers
# -------------------------

def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """
    Half-open overlap test for [a_start, a_end) and [b_start, b_end).

    Touching intervals (a_end == b_start) do not overlap.
    """
    return a_start < b_end and b_start < a_end


def parse_wall_time(raw: Any) -> time:
    """
    Accept a datetime.time or an "HH:MM" / "HH:MM:SS" string.
    """
    if isinstance(raw, time):
        return raw.replace(tzinfo=None)

    s = ("" if raw is None else str(raw)).strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(s, fmt).time()
        except ValueError:
            continue
    raise ValidationFailed("Validation failed", details=[{"field": "startTime", "message": "expected HH:MM"}])


def validate_duration(duration: Any) -> int:
    try:
        minutes = int(duration)
    except (TypeError, ValueError):
        minutes = 0
    if minutes < MIN_DURATION_MINUTES or minutes > MAX_DURATION_MINUTES:
        raise ValidationFailed(
            "Validation failed",
            details=[{
                "field": "duration",
                "message": f"duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes",
            }],
        )
    return minutes


def slot_bounds(scheduled_date: date, start: time, duration: int) -> Tuple[datetime, datetime]:
    start_at = datetime.combine(scheduled_date, start)
    return start_at, start_at + timedelta(minutes=duration)


def iter_free_slots(
    appointments: Iterable[Appointment],
    day: date,
    working_hours: Optional[Tuple[int, int]] = None,
    slot_minutes: Optional[int] = None,
) -> Iterator[Slot]:
    """
    Lazily yield the free slots of `day`.

    A slot is free iff it overlaps none of the active appointments in
    `appointments` that fall on `day`. Each call starts a fresh pass.
    """
    start_hour, end_hour = working_hours or settings.working_hours
    step = timedelta(minutes=slot_minutes or settings.slot_minutes)

    busy = [
        (a.start_time, a.end_time)
        for a in appointments
        if a.scheduled_date == day and a.status not in INACTIVE_APPOINTMENT_STATUSES
    ]

    cursor = datetime.combine(day, time.min) + timedelta(hours=start_hour)
    closing = datetime.combine(day, time.min) + timedelta(hours=end_hour)

    while cursor + step <= closing:
        slot_end = cursor + step
        if not any(intervals_overlap(cursor, slot_end, b_start, b_end) for b_start, b_end in busy):
            yield Slot(start=cursor, end=slot_end)
        cursor = slot_end


# -------------------------
# Store-backed operations
# -------------------------

def _lock_staff(session: Session, staff_user_id: int) -> User:
    """
    Load the staff row with FOR UPDATE so concurrent bookings for the same
    staff member serialise on it (SQLite ignores the clause and serialises
    writers at commit instead).
    """
    staff = session.exec(select(User).where(User.id == staff_user_id).with_for_update()).first()
    if not staff:
        raise NotFound("User not found")
    return staff


def find_conflicts(
    session: Session,
    *,
    staff_user_id: int,
    scheduled_date: date,
    start: datetime,
    end: datetime,
    exclude_id: Optional[int] = None,
) -> List[Appointment]:
    """
    Active appointments of `staff_user_id` on `scheduled_date` that overlap [start, end).

    The three clauses are: new start inside existing, new end inside existing,
    new interval containing existing.
    """
    q = select(Appointment).where(
        Appointment.user_id == staff_user_id,
        Appointment.scheduled_date == scheduled_date,
        Appointment.status.not_in(INACTIVE_APPOINTMENT_STATUSES),
        or_(
            and_(Appointment.start_time <= start, Appointment.end_time > start),
            and_(Appointment.start_time < end, Appointment.end_time >= end),
            and_(Appointment.start_time >= start, Appointment.end_time <= end),
        ),
    )
    if exclude_id is not None:
        q = q.where(Appointment.id != exclude_id)
    return list(session.exec(q).all())


def _raise_conflict(conflicts: Sequence[Appointment], staff_user_id: int, start: datetime) -> None:
    ids = [a.id for a in conflicts]
    logger.warning("Appointment conflict for staff %s at %s with %s", staff_user_id, start.isoformat(), ids)
    raise Conflict(CONFLICT_MESSAGE, details={"conflicting_appointment_ids": ids})


def schedule(
    session: Session,
    *,
    title: str,
    visitor_id: int,
    staff_user_id: int,
    scheduled_date: date,
    start_time: Any,
    duration: int = 30,
    priority: Priority = Priority.NORMAL,
    status: AppointmentStatus = AppointmentStatus.PENDING,
    location: Optional[str] = None,
    notes: Optional[str] = None,
    description: Optional[str] = None,
) -> Appointment:
    """
    Book a slot for a visitor with a staff member.

    Raises:
      - ValidationFailed for a bad time or a duration outside 15..240 minutes
      - NotFound when the visitor or staff member does not exist
      - Conflict when the staff member already has an overlapping active appointment
    """
    minutes = validate_duration(duration)
    start, end = slot_bounds(scheduled_date, parse_wall_time(start_time), minutes)

    with atomic(session):
        if not session.get(Visitor, visitor_id):
            raise NotFound("Visitor not found")
        _lock_staff(session, staff_user_id)

        conflicts = find_conflicts(
            session,
            staff_user_id=staff_user_id,
            scheduled_date=scheduled_date,
            start=start,
            end=end,
        )
        if conflicts:
            _raise_conflict(conflicts, staff_user_id, start)

        appointment = Appointment(
            title=title,
            description=description,
            visitor_id=visitor_id,
            user_id=staff_user_id,
            scheduled_date=scheduled_date,
            start_time=start,
            end_time=end,
            duration=minutes,
            location=location,
            notes=notes,
            status=status,
            priority=priority,
        )
        session.add(appointment)

    session.refresh(appointment)
    logger.info(
        "Scheduled appointment %s for visitor %s with staff %s at %s",
        appointment.id, visitor_id, staff_user_id, start.isoformat(),
    )
    return appointment


_TIMING_FIELDS = ("scheduled_date", "start_time", "duration", "user_id")
_PLAIN_FIELDS = ("title", "description", "location", "notes", "priority", "status")
_NON_NULLABLE = ("title", "priority", "status")


def reschedule(
    session: Session,
    appointment_id: int,
    changes: Dict[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Appointment:
    """
    Patch an appointment. Unspecified date/time/duration/staff fall back to the
    stored values; the conflict check (excluding this appointment) runs when
    any of them changes or when a cancelled/no-show appointment is reactivated.
    """
    with atomic(session):
        appointment = session.get(Appointment, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")

        timing_changed = any(changes.get(k) is not None for k in _TIMING_FIELDS)
        new_status = changes.get("status") or appointment.status
        reactivated = (
            appointment.status in INACTIVE_APPOINTMENT_STATUSES
            and new_status not in INACTIVE_APPOINTMENT_STATUSES
        )

        if timing_changed or reactivated:
            new_date = changes.get("scheduled_date") or appointment.scheduled_date
            new_time = parse_wall_time(changes.get("start_time") or appointment.start_time.time())
            minutes = validate_duration(changes.get("duration") or appointment.duration)
            staff_user_id = changes.get("user_id") or appointment.user_id
            start, end = slot_bounds(new_date, new_time, minutes)

            _lock_staff(session, staff_user_id)
            if new_status not in INACTIVE_APPOINTMENT_STATUSES:
                conflicts = find_conflicts(
                    session,
                    staff_user_id=staff_user_id,
                    scheduled_date=new_date,
                    start=start,
                    end=end,
                    exclude_id=appointment.id,
                )
                if conflicts:
                    _raise_conflict(conflicts, staff_user_id, start)

            appointment.scheduled_date = new_date
            appointment.start_time = start
            appointment.end_time = end
            appointment.duration = minutes
            appointment.user_id = staff_user_id

        for key in _PLAIN_FIELDS:
            if key not in changes:
                continue
            if changes[key] is None and key in _NON_NULLABLE:
                continue
            setattr(appointment, key, changes[key])

        appointment.updated_at = now or local_now()
        session.add(appointment)

    session.refresh(appointment)
    logger.info("Updated appointment %s (%s)", appointment.id, ", ".join(sorted(changes)) or "no fields")
    return appointment


def delete_appointment(session: Session, appointment_id: int) -> None:
    """
    Hard delete. Visits that pointed at the appointment keep their history
    with appointment_id cleared.
    """
    with atomic(session):
        appointment = session.get(Appointment, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")

        linked = session.exec(select(Visit).where(Visit.appointment_id == appointment_id)).all()
        for visit in linked:
            visit.appointment_id = None
            session.add(visit)
        session.flush()
        session.delete(appointment)

    logger.info("Deleted appointment %s", appointment_id)


def list_available_slots(
    session: Session,
    staff_user_id: int,
    day: date,
    working_hours: Optional[Tuple[int, int]] = None,
    slot_minutes: Optional[int] = None,
) -> Iterator[Slot]:
    """
    Free slots for one staff member on one day, against the current
    appointment set. Raises NotFound eagerly; the slots themselves are lazy.
    """
    if not session.get(User, staff_user_id):
        raise NotFound("User not found")

    appointments = session.exec(
        select(Appointment).where(
            Appointment.user_id == staff_user_id,
            Appointment.scheduled_date == day,
        )
    ).all()
    return iter_free_slots(appointments, day, working_hours=working_hours, slot_minutes=slot_minutes)


def calendar_view(
    session: Session,
    *,
    start_date: date,
    end_date: date,
    staff_user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Appointments in [start_date, end_date] grouped by date, per-day status
    counts, and the free slots of every day in the window.
    """
    if end_date < start_date:
        raise ValidationFailed("endDate must not be before startDate")
    span = (end_date - start_date).days + 1
    if span > MAX_CALENDAR_DAYS:
        raise ValidationFailed(f"Date range must not exceed {MAX_CALENDAR_DAYS} days")

    q = select(Appointment).where(
        Appointment.scheduled_date >= start_date,
        Appointment.scheduled_date <= end_date,
    )
    if staff_user_id is not None:
        q = q.where(Appointment.user_id == staff_user_id)
    appointments = list(session.exec(q.order_by(Appointment.start_time)).all())

    by_date: Dict[str, List[Appointment]] = {}
    for a in appointments:
        by_date.setdefault(a.scheduled_date.isoformat(), []).append(a)

    daily_stats = []
    for key, items in by_date.items():
        counts = {s: 0 for s in AppointmentStatus}
        for a in items:
            counts[AppointmentStatus(a.status)] += 1
        daily_stats.append({
            "date": key,
            "total": len(items),
            "pending": counts[AppointmentStatus.PENDING],
            "confirmed": counts[AppointmentStatus.CONFIRMED],
            "completed": counts[AppointmentStatus.COMPLETED],
            "cancelled": counts[AppointmentStatus.CANCELLED],
        })

    available_slots = []
    for offset in range(span):
        day = start_date + timedelta(days=offset)
        available_slots.append({
            "date": day.isoformat(),
            "slots": list(iter_free_slots(by_date.get(day.isoformat(), []), day)),
        })

    return {
        "appointments": appointments,
        "appointments_by_date": by_date,
        "daily_stats": daily_stats,
        "available_slots": available_slots,
        "summary": {
            "total_appointments": len(appointments),
            "date_range": {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            "unique_visitors": len({a.visitor_id for a in appointments}),
            "unique_users": len({a.user_id for a in appointments}),
        },
    }

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..database import atomic
from ..errors import Conflict, InvalidState, NotFound, ValidationFailed
from ..models.appointment import INACTIVE_APPOINTMENT_STATUSES, Appointment, AppointmentStatus
from ..models.common import Priority, local_now, priority_rank
from ..models.user import User
from ..models.visit import Visit, VisitStatus
from ..models.visitor import Visitor
from .scheduler import _lock_staff, _raise_conflict, find_conflicts

logger = logging.getLogger(__name__)

ACTIVE_VISIT_MESSAGE = "Visitor already has an active visit"
NOT_IN_PROGRESS_MESSAGE = "Visit is not in progress"

# Appointments in these states never show up as "scheduled today".
_NOT_WAITING = (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW)


@dataclass(frozen=True)
class ScheduledEntry:
    appointment: Appointment
    estimated_wait_minutes: float
    estimated_start_time: datetime


@dataclass(frozen=True)
class QueueStats:
    total_active: int
    total_completed_today: int
    total_scheduled_today: int
    average_wait_minutes: float
    average_visit_minutes: float


@dataclass
class QueueSnapshot:
    """
    Read-time view of the office queue. Nothing here is persisted; every
    call re-derives the order from the current IN_PROGRESS set.
    """
    active: List[Visit]
    completed_today: List[Visit]
    scheduled_today: List[ScheduledEntry]
    stats: QueueStats
    appointments: Dict[int, Appointment] = field(default_factory=dict)
    generated_at: Optional[datetime] = None


# -------------------------
# Pure helpers
# -------------------------

def order_queue(visits: Sequence[Visit], priority_by_appointment: Mapping[int, Any]) -> List[Visit]:
    """
    Sort open visits by linked-appointment priority (URGENT first; walk-ins
    count as NORMAL), then by check-in time, earliest first.
    """
    def _key(v: Visit):
        p = priority_by_appointment.get(v.appointment_id, Priority.NORMAL) if v.appointment_id else Priority.NORMAL
        return (-priority_rank(p), v.check_in_time)

    return sorted(visits, key=_key)


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


def average_wait_minutes(visits: Sequence[Visit], appointments: Mapping[int, Appointment]) -> float:
    """
    Mean of (check-in - appointment start) over visits that have a linked
    appointment. Walk-ins are left out of both sum and count.
    """
    waits = [
        _minutes(v.check_in_time - appointments[v.appointment_id].start_time)
        for v in visits
        if v.appointment_id in appointments
    ]
    if not waits:
        return 0.0
    return round(sum(waits) / len(waits), 2)


def average_visit_minutes(visits: Sequence[Visit]) -> float:
    durations = [_minutes(v.check_out_time - v.check_in_time) for v in visits if v.check_out_time]
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def _clean_satisfaction(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = 0
    if n < 1 or n > 5:
        raise ValidationFailed(
            "Validation failed",
            details=[{"field": "satisfaction", "message": "satisfaction must be between 1 and 5"}],
        )
    return n


# -------------------------
# Transitions
# -------------------------

def _find_open_visit(session: Session, visitor_id: int) -> Optional[Visit]:
    return session.exec(
        select(Visit).where(Visit.visitor_id == visitor_id, Visit.status == VisitStatus.IN_PROGRESS)
    ).first()


def _confirm_for_check_in(session: Session, appointment: Appointment, at: datetime) -> None:
    """
    PENDING / CONFIRMED -> CONFIRMED. A COMPLETED appointment keeps its status.
    A CANCELLED or NO_SHOW one only comes back if its slot is still free for
    the staff member; otherwise the check-in fails with the booking conflict.
    """
    if appointment.status == AppointmentStatus.COMPLETED:
        return

    if appointment.status in INACTIVE_APPOINTMENT_STATUSES:
        _lock_staff(session, appointment.user_id)
        conflicts = find_conflicts(
            session,
            staff_user_id=appointment.user_id,
            scheduled_date=appointment.scheduled_date,
            start=appointment.start_time,
            end=appointment.end_time,
            exclude_id=appointment.id,
        )
        if conflicts:
            _raise_conflict(conflicts, appointment.user_id, appointment.start_time)

    appointment.status = AppointmentStatus.CONFIRMED
    appointment.updated_at = at
    session.add(appointment)


def check_in(
    session: Session,
    *,
    visitor_id: int,
    staff_user_id: int,
    appointment_id: Optional[int] = None,
    purpose: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Visit:
    """
    Open a visit for a visitor.

    Writes (one commit):
      - new Visit(IN_PROGRESS, check_in_time=now)
      - linked appointment -> CONFIRMED (a COMPLETED one is left as is; a
        CANCELLED or NO_SHOW one must still fit the staff calendar)
      - visitor.visit_count += 1, visitor.last_visit = now

    The application check gives a friendly 409; the partial unique index on
    visits catches the concurrent case, which surfaces as the same Conflict.
    """
    at = now or local_now()

    try:
        with atomic(session):
            visitor = session.get(Visitor, visitor_id)
            if not visitor:
                raise NotFound("Visitor not found")
            if not session.get(User, staff_user_id):
                raise NotFound("User not found")

            if _find_open_visit(session, visitor_id):
                logger.warning("Rejected check-in for visitor %s: already in progress", visitor_id)
                raise Conflict(ACTIVE_VISIT_MESSAGE)

            if appointment_id is not None:
                appointment = session.get(Appointment, appointment_id)
                if not appointment:
                    raise NotFound("Appointment not found")
                _confirm_for_check_in(session, appointment, at)

            visit = Visit(
                visitor_id=visitor_id,
                user_id=staff_user_id,
                appointment_id=appointment_id,
                check_in_time=at,
                status=VisitStatus.IN_PROGRESS,
                purpose=purpose,
                notes=notes,
                created_at=at,
            )
            session.add(visit)

            visitor.record_check_in(at)
            session.add(visitor)
    except IntegrityError as exc:
        logger.warning("Rejected check-in for visitor %s: concurrent active visit", visitor_id)
        raise Conflict(ACTIVE_VISIT_MESSAGE) from exc

    session.refresh(visit)
    logger.info("Checked in visitor %s with staff %s (visit %s)", visitor_id, staff_user_id, visit.id)
    return visit


def _close(
    session: Session,
    visit_id: int,
    *,
    status: VisitStatus,
    appointment_status: AppointmentStatus,
    notes: Optional[str],
    satisfaction: Optional[int],
    now: Optional[datetime],
    extra: Optional[Dict[str, Any]] = None,
) -> Visit:
    at = now or local_now()

    with atomic(session):
        visit = session.get(Visit, visit_id)
        if not visit:
            raise NotFound("Visit not found")
        if visit.status != VisitStatus.IN_PROGRESS:
            logger.warning("Rejected %s of visit %s in state %s", status.value, visit_id, visit.status)
            raise InvalidState(NOT_IN_PROGRESS_MESSAGE)

        visit.status = status
        visit.check_out_time = at
        if notes:
            visit.notes = notes
        if satisfaction is not None:
            visit.satisfaction = satisfaction
        for key, value in (extra or {}).items():
            setattr(visit, key, value)
        session.add(visit)

        if visit.appointment_id is not None:
            appointment = session.get(Appointment, visit.appointment_id)
            if appointment:
                appointment.status = appointment_status
                appointment.updated_at = at
                session.add(appointment)

    session.refresh(visit)
    logger.info("Visit %s -> %s", visit.id, status.value)
    return visit


def check_out(
    session: Session,
    visit_id: int,
    *,
    notes: Optional[str] = None,
    satisfaction: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Visit:
    """
    IN_PROGRESS -> COMPLETED; linked appointment -> COMPLETED.
    A second call fails with InvalidState and leaves check_out_time as it was.
    """
    return _close(
        session,
        visit_id,
        status=VisitStatus.COMPLETED,
        appointment_status=AppointmentStatus.COMPLETED,
        notes=notes,
        satisfaction=_clean_satisfaction(satisfaction),
        now=now,
    )


def cancel(
    session: Session,
    visit_id: int,
    *,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Visit:
    """
    IN_PROGRESS -> CANCELLED; linked appointment -> CANCELLED.
    """
    return _close(
        session,
        visit_id,
        status=VisitStatus.CANCELLED,
        appointment_status=AppointmentStatus.CANCELLED,
        notes=notes,
        satisfaction=None,
        now=now,
    )


def update_visit(
    session: Session,
    visit_id: int,
    changes: Dict[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Visit:
    """
    Patch purpose / notes / satisfaction. A status in the patch goes through
    the same close step as check_out or cancel, with the other fields written
    in that one commit.
    """
    visit = session.get(Visit, visit_id)
    if not visit:
        raise NotFound("Visit not found")

    target = changes.get("status")
    if target is not None:
        target = VisitStatus(target)
        if target == visit.status:
            target = None
        elif target not in (VisitStatus.COMPLETED, VisitStatus.CANCELLED):
            logger.warning("Rejected visit %s transition %s -> %s", visit_id, visit.status, target.value)
            raise InvalidState(f"Cannot move visit from {VisitStatus(visit.status).value} to {target.value}")

    satisfaction = _clean_satisfaction(changes.get("satisfaction"))

    if target is not None:
        extra: Dict[str, Any] = {}
        if "purpose" in changes:
            extra["purpose"] = changes["purpose"]
        return _close(
            session,
            visit_id,
            status=target,
            appointment_status=(
                AppointmentStatus.COMPLETED if target == VisitStatus.COMPLETED else AppointmentStatus.CANCELLED
            ),
            notes=changes.get("notes"),
            satisfaction=satisfaction,
            now=now,
            extra=extra,
        )

    with atomic(session):
        if "purpose" in changes:
            visit.purpose = changes["purpose"]
        if "notes" in changes:
            visit.notes = changes["notes"]
        if satisfaction is not None:
            visit.satisfaction = satisfaction
        session.add(visit)

    session.refresh(visit)
    return visit


def delete_visit(session: Session, visit_id: int) -> None:
    with atomic(session):
        visit = session.get(Visit, visit_id)
        if not visit:
            raise NotFound("Visit not found")
        session.delete(visit)
    logger.info("Deleted visit %s", visit_id)


# -------------------------
# Queue view
# -------------------------

def queue_snapshot(
    session: Session,
    *,
    staff_user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> QueueSnapshot:
    at = now or local_now()
    today = at.date()
    day_start = datetime.combine(today, time.min)
    day_end = day_start + timedelta(days=1)

    active_q = select(Visit).where(Visit.status == VisitStatus.IN_PROGRESS)
    done_q = select(Visit).where(
        Visit.status == VisitStatus.COMPLETED,
        Visit.check_in_time >= day_start,
        Visit.check_in_time < day_end,
    )
    if staff_user_id is not None:
        active_q = active_q.where(Visit.user_id == staff_user_id)
        done_q = done_q.where(Visit.user_id == staff_user_id)

    active = list(session.exec(active_q).all())
    completed = list(session.exec(done_q.order_by(Visit.check_out_time.desc())).all())

    linked_ids = {v.appointment_id for v in active + completed if v.appointment_id is not None}
    appointments: Dict[int, Appointment] = {}
    if linked_ids:
        for a in session.exec(select(Appointment).where(Appointment.id.in_(linked_ids))).all():
            appointments[a.id] = a

    visited = select(Visit.appointment_id).where(Visit.appointment_id.is_not(None))
    sched_q = select(Appointment).where(
        Appointment.scheduled_date == today,
        Appointment.status.not_in(_NOT_WAITING),
        Appointment.id.not_in(visited),
    )
    if staff_user_id is not None:
        sched_q = sched_q.where(Appointment.user_id == staff_user_id)
    waiting = sorted(
        session.exec(sched_q).all(),
        key=lambda a: (-priority_rank(a.priority), a.start_time),
    )

    stats = QueueStats(
        total_active=len(active),
        total_completed_today=len(completed),
        total_scheduled_today=len(waiting),
        average_wait_minutes=average_wait_minutes(completed, appointments),
        average_visit_minutes=average_visit_minutes(completed),
    )

    wait = max(0.0, stats.average_visit_minutes * len(active))
    scheduled = [
        ScheduledEntry(
            appointment=a,
            estimated_wait_minutes=wait,
            estimated_start_time=at + timedelta(minutes=wait),
        )
        for a in waiting
    ]

    priorities = {aid: a.priority for aid, a in appointments.items()}
    return QueueSnapshot(
        active=order_queue(active, priorities),
        completed_today=completed,
        scheduled_today=scheduled,
        stats=stats,
        appointments=appointments,
        generated_at=at,
    )

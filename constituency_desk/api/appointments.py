from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field as PydField
from sqlalchemy import func
from sqlmodel import Session, select

from ..database import get_db
from ..errors import NotFound
from ..models.appointment import (
    MAX_DURATION_MINUTES,
    MIN_DURATION_MINUTES,
    Appointment,
    AppointmentStatus,
)
from ..models.common import Priority
from ..models.user import User
from ..models.visit import Visit
from ..models.visitor import Visitor
from ..security import DELETE_ROLES, WRITE_ROLES, CurrentUser, get_current_user, require_roles
from ..services import scheduler
from .shared import PageParams, load_many, pagination, user_brief, visitor_brief

router = APIRouter(prefix="/appointments", tags=["appointments"])


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------
class AppointmentCreate(BaseModel):
    title: str = PydField(..., min_length=1)
    description: Optional[str] = None
    visitor_id: int = PydField(..., ge=1)
    user_id: int = PydField(..., ge=1)
    scheduled_date: date
    start_time: str = PydField(..., description="Wall time, HH:MM")
    duration: int = PydField(30, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    location: Optional[str] = None
    notes: Optional[str] = None
    priority: Priority = Priority.NORMAL
    status: AppointmentStatus = AppointmentStatus.PENDING


class AppointmentUpdate(BaseModel):
    title: Optional[str] = PydField(None, min_length=1)
    description: Optional[str] = None
    user_id: Optional[int] = PydField(None, ge=1)
    scheduled_date: Optional[date] = None
    start_time: Optional[str] = None
    duration: Optional[int] = PydField(None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    location: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    priority: Optional[Priority] = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def serialize_appointment(
    a: Appointment,
    *,
    visitor: Optional[Visitor] = None,
    user: Optional[User] = None,
    visits: Optional[List[Visit]] = None,
) -> Dict[str, Any]:
    out = a.model_dump()
    out["visitor"] = visitor_brief(visitor)
    out["user"] = user_brief(user)
    if visits is not None:
        out["visits"] = [
            {"id": v.id, "check_in_time": v.check_in_time, "check_out_time": v.check_out_time, "status": v.status}
            for v in visits
        ]
    return out


def _serialize_many(db: Session, appointments: List[Appointment], *, with_visits: bool = True) -> List[Dict[str, Any]]:
    visitors = load_many(db, Visitor, (a.visitor_id for a in appointments))
    users = load_many(db, User, (a.user_id for a in appointments))

    visits_by_appointment: Dict[int, List[Visit]] = {}
    ids = [a.id for a in appointments]
    if with_visits and ids:
        for v in db.exec(select(Visit).where(Visit.appointment_id.in_(ids))).all():
            visits_by_appointment.setdefault(v.appointment_id, []).append(v)

    return [
        serialize_appointment(
            a,
            visitor=visitors.get(a.visitor_id),
            user=users.get(a.user_id),
            visits=visits_by_appointment.get(a.id, []) if with_visits else None,
        )
        for a in appointments
    ]


def _serialize_slot(slot: scheduler.Slot) -> Dict[str, Any]:
    return {
        "start": slot.start,
        "end": slot.end,
        "start_time": slot.start.strftime("%H:%M"),
        "end_time": slot.end.strftime("%H:%M"),
    }


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def list_appointments(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    paging: PageParams = Depends(),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    status: Optional[AppointmentStatus] = Query(None),
    user_id: Optional[int] = Query(None, alias="userId"),
    visitor_id: Optional[int] = Query(None, alias="visitorId"),
) -> Dict[str, Any]:
    def _filtered(q: Any) -> Any:
        if start_date:
            q = q.where(Appointment.scheduled_date >= start_date)
        if end_date:
            q = q.where(Appointment.scheduled_date <= end_date)
        if status:
            q = q.where(Appointment.status == status)
        if user_id is not None:
            q = q.where(Appointment.user_id == user_id)
        if visitor_id is not None:
            q = q.where(Appointment.visitor_id == visitor_id)
        return q

    total = db.exec(select(func.count()).select_from(_filtered(select(Appointment.id)).subquery())).one()
    rows = db.exec(
        _filtered(select(Appointment))
        .order_by(Appointment.scheduled_date, Appointment.start_time, Appointment.id)
        .offset(paging.offset)
        .limit(paging.limit)
    ).all()

    return {
        "appointments": _serialize_many(db, list(rows)),
        "pagination": pagination(paging.page, paging.limit, int(total or 0)),
    }


@router.post("", status_code=201)
def create_appointment(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    payload: AppointmentCreate,
) -> Dict[str, Any]:
    """
    Book a slot. 409 when the staff member already has an overlapping
    active appointment that day.
    """
    appointment = scheduler.schedule(
        db,
        title=payload.title,
        description=payload.description,
        visitor_id=payload.visitor_id,
        staff_user_id=payload.user_id,
        scheduled_date=payload.scheduled_date,
        start_time=payload.start_time,
        duration=payload.duration,
        priority=payload.priority,
        status=payload.status,
        location=payload.location,
        notes=payload.notes,
    )
    return {"success": True, "appointment": _serialize_many(db, [appointment], with_visits=False)[0]}


@router.get("/calendar")
def appointment_calendar(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    user_id: Optional[int] = Query(None, alias="userId"),
) -> Dict[str, Any]:
    view = scheduler.calendar_view(db, start_date=start_date, end_date=end_date, staff_user_id=user_id)

    serialized = {a.id: row for a, row in zip(view["appointments"], _serialize_many(db, view["appointments"]))}
    return {
        "appointments": list(serialized.values()),
        "appointments_by_date": {
            day: [serialized[a.id] for a in items] for day, items in view["appointments_by_date"].items()
        },
        "daily_stats": view["daily_stats"],
        "available_slots": [
            {"date": entry["date"], "slots": [_serialize_slot(s) for s in entry["slots"]]}
            for entry in view["available_slots"]
        ],
        "summary": view["summary"],
    }


@router.get("/slots")
def available_slots(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    user_id: int = Query(..., alias="userId", ge=1),
    day: date = Query(..., alias="date"),
) -> Dict[str, Any]:
    """
    Free slots for one staff member on one day, within office hours.
    """
    slots = scheduler.list_available_slots(db, user_id, day)
    return {"user_id": user_id, "date": day.isoformat(), "slots": [_serialize_slot(s) for s in slots]}


@router.get("/{appointment_id}")
def get_appointment(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    appointment_id: int,
) -> Dict[str, Any]:
    appointment = db.get(Appointment, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found")
    return {"appointment": _serialize_many(db, [appointment])[0]}


@router.put("/{appointment_id}")
def update_appointment(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    appointment_id: int,
    payload: AppointmentUpdate,
) -> Dict[str, Any]:
    """
    Patch or reschedule. Time-affecting changes re-run the conflict check.
    """
    appointment = scheduler.reschedule(db, appointment_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "appointment": _serialize_many(db, [appointment])[0]}


@router.delete("/{appointment_id}")
def delete_appointment(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*DELETE_ROLES)),
    appointment_id: int,
) -> Dict[str, Any]:
    scheduler.delete_appointment(db, appointment_id)
    return {"success": True, "message": "Appointment deleted successfully"}

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field as PydField
from sqlalchemy import func
from sqlmodel import Session, select

from ..database import get_db
from ..errors import NotFound
from ..models.appointment import Appointment
from ..models.user import User
from ..models.visit import Visit, VisitStatus
from ..models.visitor import Visitor
from ..security import DELETE_ROLES, WRITE_ROLES, CurrentUser, get_current_user, require_roles
from ..services import queue_engine
from .shared import PageParams, load_many, pagination, user_brief, visitor_brief

router = APIRouter(prefix="/visits", tags=["visits"])


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------
class CheckInRequest(BaseModel):
    visitor_id: int = PydField(..., ge=1)
    user_id: int = PydField(..., ge=1)
    appointment_id: Optional[int] = PydField(None, ge=1)
    purpose: Optional[str] = None
    notes: Optional[str] = None


class VisitUpdate(BaseModel):
    status: Optional[VisitStatus] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    satisfaction: Optional[int] = PydField(None, ge=1, le=5)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def serialize_visits(db: Session, visits: List[Visit]) -> List[Dict[str, Any]]:
    """
    Visits with brief visitor / staff / linked-appointment references.
    """
    visitors = load_many(db, Visitor, (v.visitor_id for v in visits))
    users = load_many(db, User, (v.user_id for v in visits))
    appointments = load_many(db, Appointment, (v.appointment_id for v in visits))

    out = []
    for v in visits:
        a = appointments.get(v.appointment_id)
        item = v.model_dump()
        item["visitor"] = visitor_brief(visitors.get(v.visitor_id))
        item["user"] = user_brief(users.get(v.user_id))
        item["appointment"] = None if a is None else {
            "id": a.id,
            "title": a.title,
            "scheduled_date": a.scheduled_date,
            "start_time": a.start_time,
            "priority": a.priority,
        }
        out.append(item)
    return out


def check_in_from_request(db: Session, payload: CheckInRequest) -> Visit:
    return queue_engine.check_in(
        db,
        visitor_id=payload.visitor_id,
        staff_user_id=payload.user_id,
        appointment_id=payload.appointment_id,
        purpose=payload.purpose,
        notes=payload.notes,
    )


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def list_visits(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    paging: PageParams = Depends(),
    status: Optional[VisitStatus] = Query(None),
    user_id: Optional[int] = Query(None, alias="userId"),
    visitor_id: Optional[int] = Query(None, alias="visitorId"),
    on_date: Optional[date] = Query(None, alias="date"),
) -> Dict[str, Any]:
    def _filtered(q: Any) -> Any:
        if status:
            q = q.where(Visit.status == status)
        if user_id is not None:
            q = q.where(Visit.user_id == user_id)
        if visitor_id is not None:
            q = q.where(Visit.visitor_id == visitor_id)
        if on_date:
            day_start = datetime.combine(on_date, time.min)
            q = q.where(Visit.check_in_time >= day_start, Visit.check_in_time < day_start + timedelta(days=1))
        return q

    total = db.exec(select(func.count()).select_from(_filtered(select(Visit.id)).subquery())).one()
    rows = db.exec(
        _filtered(select(Visit))
        .order_by(Visit.check_in_time.desc(), Visit.id.desc())
        .offset(paging.offset)
        .limit(paging.limit)
    ).all()

    return {
        "visits": serialize_visits(db, list(rows)),
        "pagination": pagination(paging.page, paging.limit, int(total or 0)),
    }


@router.post("", status_code=201)
def create_visit(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    payload: CheckInRequest,
) -> Dict[str, Any]:
    """
    Check a visitor in. 409 when the visitor already has a visit in progress.
    """
    visit = check_in_from_request(db, payload)
    return {"success": True, "visit": serialize_visits(db, [visit])[0]}


@router.get("/{visit_id}")
def get_visit(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    visit_id: int,
) -> Dict[str, Any]:
    visit = db.get(Visit, visit_id)
    if not visit:
        raise NotFound("Visit not found")
    return {"visit": serialize_visits(db, [visit])[0]}


@router.put("/{visit_id}")
def update_visit(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    visit_id: int,
    payload: VisitUpdate,
) -> Dict[str, Any]:
    """
    Patch purpose/notes/satisfaction. status=COMPLETED checks out (stamping
    check_out_time), status=CANCELLED cancels; other status moves are rejected.
    """
    visit = queue_engine.update_visit(db, visit_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "visit": serialize_visits(db, [visit])[0]}


@router.delete("/{visit_id}")
def delete_visit(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*DELETE_ROLES)),
    visit_id: int,
) -> Dict[str, Any]:
    queue_engine.delete_visit(db, visit_id)
    return {"success": True, "message": "Visit deleted successfully"}

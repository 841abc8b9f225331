from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field as PydField, ValidationError
from sqlmodel import Session

from ..database import get_db
from ..errors import ValidationFailed
from ..models.common import local_now
from ..models.user import User
from ..models.visitor import Visitor
from ..security import WRITE_ROLES, CurrentUser, get_current_user, require_roles
from ..services import queue_engine
from .shared import load_many, user_brief, visitor_brief
from .visits import CheckInRequest, check_in_from_request, serialize_visits

router = APIRouter(prefix="/queue", tags=["queue"])


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------
class QueueAction(str, Enum):
    CHECKIN = "checkin"
    CHECKOUT = "checkout"
    CANCEL = "cancel"


class CheckOutRequest(BaseModel):
    visit_id: int = PydField(..., ge=1)
    notes: Optional[str] = None
    satisfaction: Optional[int] = PydField(None, ge=1, le=5)


class CancelRequest(BaseModel):
    visit_id: int = PydField(..., ge=1)
    notes: Optional[str] = None


def _parse(model: type, body: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        details = [
            {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")}
            for e in exc.errors()
        ]
        raise ValidationFailed("Validation failed", details=details)


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def queue_status(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    user_id: Optional[int] = Query(None, alias="userId"),
) -> Dict[str, Any]:
    """
    Live office queue: open visits in service order, today's completed
    visits, and today's appointments still waiting, with wait estimates.
    """
    snap = queue_engine.queue_snapshot(db, staff_user_id=user_id)

    waiting = [e.appointment for e in snap.scheduled_today]
    visitors = load_many(db, Visitor, (a.visitor_id for a in waiting))
    users = load_many(db, User, (a.user_id for a in waiting))

    return {
        "active_visits": serialize_visits(db, snap.active),
        "completed_visits_today": serialize_visits(db, snap.completed_today),
        "scheduled_appointments_today": [
            {
                **e.appointment.model_dump(),
                "visitor": visitor_brief(visitors.get(e.appointment.visitor_id)),
                "user": user_brief(users.get(e.appointment.user_id)),
                "estimated_wait_minutes": e.estimated_wait_minutes,
                "estimated_start_time": e.estimated_start_time,
            }
            for e in snap.scheduled_today
        ],
        "queue_stats": {
            "total_active": snap.stats.total_active,
            "total_completed_today": snap.stats.total_completed_today,
            "total_scheduled_today": snap.stats.total_scheduled_today,
            "average_wait_minutes": snap.stats.average_wait_minutes,
            "average_visit_minutes": snap.stats.average_visit_minutes,
        },
        "last_updated": snap.generated_at or local_now(),
    }


@router.post("/actions")
def queue_action(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    action: str = Query(...),
    body: Optional[Dict[str, Any]] = Body(None),
) -> Dict[str, Any]:
    """
    Queue transitions: ?action=checkin | checkout | cancel.
    """
    try:
        kind = QueueAction(action)
    except ValueError:
        raise ValidationFailed("Invalid action")
    body = body or {}

    if kind == QueueAction.CHECKIN:
        visit = check_in_from_request(db, _parse(CheckInRequest, body))
        message = "Visitor checked in successfully"
    elif kind == QueueAction.CHECKOUT:
        req = _parse(CheckOutRequest, body)
        visit = queue_engine.check_out(db, req.visit_id, notes=req.notes, satisfaction=req.satisfaction)
        message = "Visitor checked out successfully"
    else:
        req = _parse(CancelRequest, body)
        visit = queue_engine.cancel(db, req.visit_id, notes=req.notes)
        message = "Visit cancelled successfully"

    return {"success": True, "message": message, "visit": serialize_visits(db, [visit])[0]}

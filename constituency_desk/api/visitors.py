from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field as PydField
from sqlmodel import Session

from ..config import settings
from ..database import get_db
from ..models.appointment import Appointment
from ..models.issue import Issue
from ..models.user import User
from ..models.visit import Visit
from ..models.visitor import Gender, Visitor, VisitorCategory
from ..security import DELETE_ROLES, WRITE_ROLES, CurrentUser, get_current_user, require_roles
from ..services import visitor_history, visitor_registry
from .shared import PageParams, load_many, pagination, user_brief

router = APIRouter(prefix="/visitors", tags=["visitors"])


# -----------------------------------------------------------------------------
# Schemas (do NOT use DB model as input)
# -----------------------------------------------------------------------------
class VisitorCreate(BaseModel):
    name: str = PydField(..., min_length=2)
    phone: str = PydField(..., min_length=10)
    email: Optional[EmailStr] = None
    aadhaar: Optional[str] = None
    voter_id: Optional[str] = None
    village: str = PydField(..., min_length=1)
    district: str = PydField(..., min_length=1)
    state: str = settings.default_state
    address: Optional[str] = None
    category: VisitorCategory = VisitorCategory.OTHER
    age: Optional[int] = PydField(None, ge=1, le=120)
    gender: Optional[Gender] = None
    occupation: Optional[str] = None
    education: Optional[str] = None
    skills: Optional[List[str]] = None
    notes: Optional[str] = None


class VisitorUpdate(BaseModel):
    name: Optional[str] = PydField(None, min_length=2)
    phone: Optional[str] = PydField(None, min_length=10)
    email: Optional[EmailStr] = None
    aadhaar: Optional[str] = None
    voter_id: Optional[str] = None
    village: Optional[str] = PydField(None, min_length=1)
    district: Optional[str] = PydField(None, min_length=1)
    state: Optional[str] = None
    address: Optional[str] = None
    category: Optional[VisitorCategory] = None
    age: Optional[int] = PydField(None, ge=1, le=120)
    gender: Optional[Gender] = None
    occupation: Optional[str] = None
    education: Optional[str] = None
    skills: Optional[List[str]] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def serialize_visitor(v: Visitor, counts: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    out = v.model_dump()
    out["skills"] = list(v.skills or [])
    if counts is not None:
        out["_count"] = counts
    return out


def _search_row(v: Visitor) -> Dict[str, Any]:
    return {
        "id": v.id,
        "name": v.name,
        "phone": v.phone,
        "email": v.email,
        "village": v.village,
        "district": v.district,
        "category": v.category,
        "last_visit": v.last_visit,
        "visit_count": v.visit_count,
    }


_USER_REFS = {"user_id": "user", "created_by_id": "created_by", "assigned_user_id": "assigned_to"}


def _with_users(db: Session, rows: List[Any], *keys: str) -> List[Dict[str, Any]]:
    users = load_many(db, User, (getattr(r, k) for r in rows for k in keys))
    out = []
    for r in rows:
        item = r.model_dump()
        for k in keys:
            item[_USER_REFS[k]] = user_brief(users.get(getattr(r, k)))
        out.append(item)
    return out


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def list_visitors(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    paging: PageParams = Depends(),
    search: Optional[str] = Query(None),
    category: Optional[VisitorCategory] = Query(None),
    village: Optional[str] = Query(None),
    district: Optional[str] = Query(None),
) -> Dict[str, Any]:
    """
    Active visitors, most recently updated first, with visit/appointment/issue counts.
    """
    result = visitor_registry.list_visitors(
        db,
        page=paging.page,
        limit=paging.limit,
        search=search,
        category=category,
        village=village,
        district=district,
    )
    return {
        "visitors": [serialize_visitor(v, result.counts.get(v.id)) for v in result.items],
        "pagination": pagination(result.page, result.limit, result.total),
    }


@router.post("", status_code=201)
def register_visitor(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    payload: VisitorCreate,
) -> Dict[str, Any]:
    visitor = visitor_registry.register(db, payload.model_dump())
    return {"success": True, "visitor": serialize_visitor(visitor)}


@router.get("/search")
def search_visitors(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    q: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
) -> Dict[str, Any]:
    result = visitor_registry.search(db, q, limit=limit)
    if result.message:
        return {"visitors": [], "message": result.message}
    return {
        "visitors": [_search_row(v) for v in result.visitors],
        "query": result.query,
        "count": len(result.visitors),
    }


@router.get("/{visitor_id}")
def get_visitor(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    visitor_id: int,
) -> Dict[str, Any]:
    """
    One visitor (soft-deleted ones included) with the five most recent
    visits, appointments and issues.
    """
    detail = visitor_registry.get_with_recent(db, visitor_id)

    out = serialize_visitor(detail.visitor)
    out["visits"] = _with_users(db, detail.visits, "user_id")
    out["appointments"] = _with_users(db, detail.appointments, "user_id")
    out["issues"] = _with_users(db, detail.issues, "created_by_id", "assigned_user_id")
    return {"visitor": out}


@router.put("/{visitor_id}")
def update_visitor(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    visitor_id: int,
    payload: VisitorUpdate,
) -> Dict[str, Any]:
    visitor = visitor_registry.update(db, visitor_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "visitor": serialize_visitor(visitor)}


@router.delete("/{visitor_id}")
def delete_visitor(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*DELETE_ROLES)),
    visitor_id: int,
) -> Dict[str, Any]:
    visitor_registry.soft_delete(db, visitor_id)
    return {"success": True, "message": "Visitor deleted successfully"}


@router.get("/{visitor_id}/history")
def visitor_history_view(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    visitor_id: int,
    limit: int = Query(visitor_history.DEFAULT_LIMIT, ge=1, le=500),
) -> Dict[str, Any]:
    h = visitor_history.build_history(db, visitor_id, limit=limit)

    users = load_many(
        db,
        User,
        [v.user_id for v in h.visits]
        + [a.user_id for a in h.appointments]
        + [i.created_by_id for i in h.issues]
        + [i.assigned_user_id for i in h.issues]
        + [c.user_id for cs in h.recent_comments.values() for c in cs],
    )
    linked = load_many(db, Appointment, (v.appointment_id for v in h.visits))

    visits_by_appointment: Dict[int, List[Dict[str, Any]]] = {}
    for v in h.visits:
        if v.appointment_id is not None:
            visits_by_appointment.setdefault(v.appointment_id, []).append(
                {"id": v.id, "check_in_time": v.check_in_time, "status": v.status}
            )

    def _visit(v: Visit) -> Dict[str, Any]:
        a = linked.get(v.appointment_id)
        return {
            **v.model_dump(),
            "user": user_brief(users.get(v.user_id)),
            "appointment": None if a is None else {
                "id": a.id, "title": a.title, "scheduled_date": a.scheduled_date, "priority": a.priority,
            },
        }

    def _issue(i: Issue) -> Dict[str, Any]:
        return {
            **i.model_dump(),
            "created_by": user_brief(users.get(i.created_by_id)),
            "assigned_to": user_brief(users.get(i.assigned_user_id)),
            "comments": [
                {**c.model_dump(), "user": user_brief(users.get(c.user_id))}
                for c in h.recent_comments.get(i.id, [])
            ],
        }

    return {
        "visitor": serialize_visitor(h.visitor),
        "history": {
            "visits": [_visit(v) for v in h.visits],
            "appointments": [
                {
                    **a.model_dump(),
                    "user": user_brief(users.get(a.user_id)),
                    "visits": visits_by_appointment.get(a.id, []),
                }
                for a in h.appointments
            ],
            "issues": [_issue(i) for i in h.issues],
            "resumes": [r.model_dump(exclude={"file_data"}) for r in h.resumes],
        },
        "statistics": h.statistics,
        "analytics": h.analytics,
        "insights": h.insights,
        "summary": h.summary,
    }

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from ..database import atomic
from ..errors import Conflict, NotFound, reject_nulls
from ..models.appointment import Appointment
from ..models.common import local_now
from ..models.issue import Issue
from ..models.visit import Visit
from ..models.visitor import Visitor

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2
RECENT_LIMIT = 5

# Fields a profile edit may touch. visit_count / last_visit belong to check-in.
EDITABLE_FIELDS = (
    "name",
    "phone",
    "email",
    "aadhaar",
    "voter_id",
    "village",
    "district",
    "state",
    "address",
    "category",
    "age",
    "gender",
    "occupation",
    "education",
    "skills",
    "notes",
    "is_active",
)

# NOT NULL columns: a patch may change them but never clear them.
REQUIRED_FIELDS = ("name", "phone", "village", "district", "state", "category", "is_active")


@dataclass
class VisitorPage:
    items: List[Visitor]
    counts: Dict[int, Dict[str, int]]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class VisitorDetail:
    visitor: Visitor
    visits: List[Visit] = field(default_factory=list)
    appointments: List[Appointment] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)


@dataclass
class SearchResult:
    query: str
    visitors: List[Visitor]
    message: Optional[str] = None


# -------------------------
# Duplicate detection
# -------------------------

def find_duplicate(
    session: Session,
    *,
    phone: Optional[str],
    aadhaar: Optional[str] = None,
    voter_id: Optional[str] = None,
    exclude_id: Optional[int] = None,
) -> Optional[Visitor]:
    """
    Any visitor (active or soft-deleted) sharing the phone, or the
    Aadhaar / Voter ID when those are given.
    """
    clauses = []
    if phone:
        clauses.append(Visitor.phone == phone)
    if aadhaar:
        clauses.append(Visitor.aadhaar == aadhaar)
    if voter_id:
        clauses.append(Visitor.voter_id == voter_id)
    if not clauses:
        return None

    q = select(Visitor).where(or_(*clauses))
    if exclude_id is not None:
        q = q.where(Visitor.id != exclude_id)
    return session.exec(q).first()


# -------------------------
# Writes
# -------------------------

def register(session: Session, data: Dict[str, Any]) -> Visitor:
    if find_duplicate(
        session,
        phone=data.get("phone"),
        aadhaar=data.get("aadhaar"),
        voter_id=data.get("voter_id"),
    ):
        logger.warning("Rejected duplicate visitor registration")
        raise Conflict("Visitor with this phone, Aadhaar, or Voter ID already exists")

    visitor = Visitor(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
    with atomic(session):
        session.add(visitor)
    session.refresh(visitor)

    logger.info("Registered visitor %s", visitor.id)
    return visitor


def update(session: Session, visitor_id: int, changes: Dict[str, Any]) -> Visitor:
    visitor = session.get(Visitor, visitor_id)
    if not visitor:
        raise NotFound("Visitor not found")

    reject_nulls(changes, REQUIRED_FIELDS)

    if changes.get("phone") or changes.get("aadhaar") or changes.get("voter_id"):
        if find_duplicate(
            session,
            phone=changes.get("phone"),
            aadhaar=changes.get("aadhaar"),
            voter_id=changes.get("voter_id"),
            exclude_id=visitor_id,
        ):
            logger.warning("Rejected visitor %s update: duplicate identity", visitor_id)
            raise Conflict("Another visitor with this phone, Aadhaar, or Voter ID already exists")

    with atomic(session):
        for key, value in changes.items():
            if key in EDITABLE_FIELDS:
                setattr(visitor, key, value)
        visitor.updated_at = local_now()
        session.add(visitor)
    session.refresh(visitor)
    return visitor


def soft_delete(session: Session, visitor_id: int, *, now: Optional[datetime] = None) -> Visitor:
    """
    Hide a visitor from lists and search. Visits, appointments and issues
    keep pointing at the record, which stays fetchable by id.
    """
    visitor = session.get(Visitor, visitor_id)
    if not visitor:
        raise NotFound("Visitor not found")

    with atomic(session):
        visitor.is_active = False
        visitor.updated_at = now or local_now()
        session.add(visitor)
    session.refresh(visitor)

    logger.info("Soft-deleted visitor %s", visitor_id)
    return visitor


# -------------------------
# Reads
# -------------------------

def _apply_filters(
    query: Any,
    *,
    search: Optional[str],
    category: Optional[str],
    village: Optional[str],
    district: Optional[str],
) -> Any:
    query = query.where(Visitor.is_active == True)  # noqa: E712

    raw = (search or "").strip()
    if raw:
        needle = f"%{raw}%"
        query = query.where(
            or_(
                Visitor.name.ilike(needle),
                Visitor.phone.contains(raw),
                Visitor.email.ilike(needle),
                Visitor.aadhaar.contains(raw),
                Visitor.voter_id.contains(raw),
            )
        )
    if category:
        query = query.where(Visitor.category == category)
    if village and village.strip():
        query = query.where(Visitor.village.ilike(f"%{village.strip()}%"))
    if district and district.strip():
        query = query.where(Visitor.district.ilike(f"%{district.strip()}%"))
    return query


def _count_by_visitor(session: Session, model: Any, visitor_ids: List[int]) -> Dict[int, int]:
    if not visitor_ids:
        return {}
    rows = session.exec(
        select(model.visitor_id, func.count(model.id))
        .where(model.visitor_id.in_(visitor_ids))
        .group_by(model.visitor_id)
    ).all()
    return {int(vid): int(n or 0) for vid, n in rows}


def list_visitors(
    session: Session,
    *,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    category: Optional[str] = None,
    village: Optional[str] = None,
    district: Optional[str] = None,
) -> VisitorPage:
    filters = dict(search=search, category=category, village=village, district=district)

    total = session.exec(select(func.count()).select_from(_apply_filters(select(Visitor.id), **filters).subquery())).one()

    q = _apply_filters(select(Visitor), **filters)
    q = q.order_by(Visitor.updated_at.desc(), Visitor.id.desc()).offset((page - 1) * limit).limit(limit)
    items = list(session.exec(q).all())

    ids = [v.id for v in items]
    visits = _count_by_visitor(session, Visit, ids)
    appointments = _count_by_visitor(session, Appointment, ids)
    issues = _count_by_visitor(session, Issue, ids)
    counts = {
        vid: {
            "visits": visits.get(vid, 0),
            "appointments": appointments.get(vid, 0),
            "issues": issues.get(vid, 0),
        }
        for vid in ids
    }

    return VisitorPage(items=items, counts=counts, page=page, limit=limit, total=int(total or 0))


def search(session: Session, q: Optional[str], *, limit: int = 10) -> SearchResult:
    raw = (q or "").strip()
    if len(raw) < MIN_SEARCH_LENGTH:
        return SearchResult(query=raw, visitors=[], message="Query must be at least 2 characters long")

    needle = f"%{raw}%"
    rows = session.exec(
        select(Visitor)
        .where(
            Visitor.is_active == True,  # noqa: E712
            or_(
                Visitor.name.ilike(needle),
                Visitor.phone.contains(raw),
                Visitor.email.ilike(needle),
                Visitor.aadhaar.contains(raw),
                Visitor.voter_id.contains(raw),
                Visitor.village.ilike(needle),
            ),
        )
        .order_by(Visitor.name)
        .limit(limit)
    ).all()
    return SearchResult(query=raw, visitors=list(rows))


def get_with_recent(session: Session, visitor_id: int) -> VisitorDetail:
    """
    A visitor (active or not) with its five most recent visits, appointments and issues.
    """
    visitor = session.get(Visitor, visitor_id)
    if not visitor:
        raise NotFound("Visitor not found")

    visits = session.exec(
        select(Visit).where(Visit.visitor_id == visitor_id).order_by(Visit.check_in_time.desc()).limit(RECENT_LIMIT)
    ).all()
    appointments = session.exec(
        select(Appointment)
        .where(Appointment.visitor_id == visitor_id)
        .order_by(Appointment.scheduled_date.desc(), Appointment.start_time.desc())
        .limit(RECENT_LIMIT)
    ).all()
    issues = session.exec(
        select(Issue).where(Issue.visitor_id == visitor_id).order_by(Issue.created_at.desc()).limit(RECENT_LIMIT)
    ).all()

    return VisitorDetail(
        visitor=visitor,
        visits=list(visits),
        appointments=list(appointments),
        issues=list(issues),
    )

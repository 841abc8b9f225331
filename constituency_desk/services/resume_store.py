from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..database import atomic
from ..errors import Conflict, NotFound
from ..models.common import local_now
from ..models.resume import Resume
from ..models.visitor import Visitor

logger = logging.getLogger(__name__)

METADATA_FIELDS = ("title", "description", "file_url")


@dataclass
class ResumePage:
    items: List[Resume]
    visitors: Dict[int, Visitor]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def active_resume(session: Session, visitor_id: int) -> Optional[Resume]:
    return session.exec(
        select(Resume).where(Resume.visitor_id == visitor_id, Resume.is_active == True)  # noqa: E712
    ).first()


def upload(session: Session, data: Dict[str, Any], *, now: Optional[datetime] = None) -> Resume:
    """
    Store a new active resume for a visitor, superseding the previous one.

    The old row is deactivated and flushed before the insert so the partial
    unique index never sees two active rows for the visitor.
    """
    at = now or local_now()
    visitor_id = data["visitor_id"]

    try:
        with atomic(session):
            if not session.get(Visitor, visitor_id):
                raise NotFound("Visitor not found")

            previous = active_resume(session, visitor_id)
            if previous:
                previous.is_active = False
                previous.updated_at = at
                session.add(previous)
                session.flush()

            resume = Resume(
                visitor_id=visitor_id,
                file_name=data["file_name"],
                file_type=data["file_type"],
                file_size=data["file_size"],
                file_url=data.get("file_url"),
                file_data=data["file_data"],
                title=data.get("title"),
                description=data.get("description"),
                is_active=True,
                created_at=at,
                updated_at=at,
            )
            session.add(resume)
    except IntegrityError as exc:
        logger.warning("Concurrent resume upload for visitor %s", visitor_id)
        raise Conflict("Another resume upload for this visitor is in progress") from exc

    session.refresh(resume)
    if previous:
        logger.info("Resume %s supersedes %s for visitor %s", resume.id, previous.id, visitor_id)
    else:
        logger.info("Stored resume %s for visitor %s", resume.id, visitor_id)
    return resume


def get(session: Session, resume_id: int) -> Resume:
    resume = session.get(Resume, resume_id)
    if not resume:
        raise NotFound("Resume not found")
    return resume


def update_metadata(session: Session, resume_id: int, changes: Dict[str, Any]) -> Resume:
    resume = get(session, resume_id)
    with atomic(session):
        for key in METADATA_FIELDS:
            if key in changes:
                setattr(resume, key, changes[key])
        resume.updated_at = local_now()
        session.add(resume)
    session.refresh(resume)
    return resume


def soft_delete(session: Session, resume_id: int) -> Resume:
    resume = get(session, resume_id)
    with atomic(session):
        resume.is_active = False
        resume.updated_at = local_now()
        session.add(resume)
    session.refresh(resume)
    logger.info("Deactivated resume %s", resume_id)
    return resume


def list_resumes(
    session: Session,
    *,
    page: int = 1,
    limit: int = 10,
    visitor_id: Optional[int] = None,
    category: Optional[str] = None,
) -> ResumePage:
    def _filtered(q: Any) -> Any:
        q = q.where(Resume.is_active == True)  # noqa: E712
        if visitor_id is not None:
            q = q.where(Resume.visitor_id == visitor_id)
        if category:
            q = q.join(Visitor, Visitor.id == Resume.visitor_id).where(Visitor.category == category)
        return q

    total = session.exec(select(func.count()).select_from(_filtered(select(Resume.id)).subquery())).one()
    items = list(
        session.exec(
            _filtered(select(Resume))
            .order_by(Resume.created_at.desc(), Resume.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
    )

    visitor_ids = {r.visitor_id for r in items}
    visitors: Dict[int, Visitor] = {}
    if visitor_ids:
        visitors = {v.id: v for v in session.exec(select(Visitor).where(Visitor.id.in_(visitor_ids))).all()}

    return ResumePage(items=items, visitors=visitors, page=page, limit=limit, total=int(total or 0))

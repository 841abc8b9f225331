from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlmodel import Session, select

from ..database import atomic
from ..errors import NotFound, reject_nulls
from ..models.common import PRIORITY_RANK, Priority, local_now
from ..models.issue import RESOLVED_STATUSES, Issue, IssueComment, IssueStatus
from ..models.user import User
from ..models.visitor import Visitor

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = (
    "title",
    "description",
    "category",
    "priority",
    "status",
    "village",
    "district",
    "assigned_user_id",
    "due_date",
    "resolution",
    "estimated_cost",
    "actual_cost",
    "department",
    "tags",
    "photos",
)

# NOT NULL columns: a patch may change them but never clear them.
REQUIRED_FIELDS = ("title", "description", "category", "priority", "status")

# SQL-side rank so URGENT sorts above HIGH regardless of string order.
_priority_order = case(
    *[(Issue.priority == p, rank) for p, rank in PRIORITY_RANK.items()],
    else_=PRIORITY_RANK[Priority.NORMAL],
)


@dataclass
class IssuePage:
    items: List[Issue]
    comment_counts: Dict[int, int]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def apply_resolution_stamp(issue: Issue, new_status: Optional[IssueStatus], at: datetime) -> None:
    """
    resolved_date follows status:
      - entering RESOLVED/CLOSED stamps it, unless it is already set
      - any other status clears it
    A patch without a status leaves it alone.
    """
    if new_status is None:
        return
    if IssueStatus(new_status) in RESOLVED_STATUSES:
        if issue.resolved_date is None:
            issue.resolved_date = at
    else:
        issue.resolved_date = None


def _ensure_refs(session: Session, *, visitor_id: Optional[int], assigned_user_id: Optional[int]) -> None:
    if visitor_id is not None and not session.get(Visitor, visitor_id):
        raise NotFound("Visitor not found")
    if assigned_user_id is not None and not session.get(User, assigned_user_id):
        raise NotFound("Assigned user not found")


def create(
    session: Session,
    data: Dict[str, Any],
    *,
    created_by_id: Optional[int],
    now: Optional[datetime] = None,
) -> Issue:
    at = now or local_now()
    _ensure_refs(session, visitor_id=data.get("visitor_id"), assigned_user_id=data.get("assigned_user_id"))
    if created_by_id is not None and not session.get(User, created_by_id):
        raise NotFound("User not found")

    values = {k: v for k, v in data.items() if v is not None and (k in PATCHABLE_FIELDS or k == "visitor_id")}
    issue = Issue(**values, created_by_id=created_by_id, created_at=at, updated_at=at)
    apply_resolution_stamp(issue, issue.status, at)

    with atomic(session):
        session.add(issue)
    session.refresh(issue)

    logger.info("Created issue %s (%s, %s)", issue.id, issue.category, issue.priority)
    return issue


def update(session: Session, issue_id: int, changes: Dict[str, Any], *, now: Optional[datetime] = None) -> Issue:
    """
    Arbitrary patch. No transition guards: any status may follow any status.
    """
    at = now or local_now()

    issue = session.get(Issue, issue_id)
    if not issue:
        raise NotFound("Issue not found")
    reject_nulls(changes, REQUIRED_FIELDS)
    _ensure_refs(session, visitor_id=None, assigned_user_id=changes.get("assigned_user_id"))

    was_resolved = issue.resolved_date is not None

    with atomic(session):
        for key, value in changes.items():
            if key not in PATCHABLE_FIELDS:
                continue
            if key in ("tags", "photos"):
                value = list(value or [])
            setattr(issue, key, value)
        apply_resolution_stamp(issue, changes.get("status"), at)
        issue.updated_at = at
        session.add(issue)
    session.refresh(issue)

    if issue.resolved_date is not None and not was_resolved:
        logger.info("Issue %s resolved (%s)", issue.id, issue.status)
    elif was_resolved and issue.resolved_date is None:
        logger.info("Issue %s reopened (%s)", issue.id, issue.status)
    return issue


def delete(session: Session, issue_id: int) -> None:
    with atomic(session):
        issue = session.get(Issue, issue_id)
        if not issue:
            raise NotFound("Issue not found")
        for c in session.exec(select(IssueComment).where(IssueComment.issue_id == issue_id)).all():
            session.delete(c)
        session.flush()
        session.delete(issue)
    logger.info("Deleted issue %s", issue_id)


def list_issues(
    session: Session,
    *,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    village: Optional[str] = None,
    district: Optional[str] = None,
    assigned_to: Optional[int] = None,
    visitor_id: Optional[int] = None,
) -> IssuePage:
    def _filtered(q: Any) -> Any:
        if status:
            q = q.where(Issue.status == status)
        if category:
            q = q.where(Issue.category == category)
        if priority:
            q = q.where(Issue.priority == priority)
        if village:
            q = q.where(Issue.village.ilike(f"%{village.strip()}%"))
        if district:
            q = q.where(Issue.district.ilike(f"%{district.strip()}%"))
        if assigned_to is not None:
            q = q.where(Issue.assigned_user_id == assigned_to)
        if visitor_id is not None:
            q = q.where(Issue.visitor_id == visitor_id)
        return q

    total = session.exec(select(func.count()).select_from(_filtered(select(Issue.id)).subquery())).one()

    q = _filtered(select(Issue)).order_by(_priority_order.desc(), Issue.created_at.desc(), Issue.id.desc())
    items = list(session.exec(q.offset((page - 1) * limit).limit(limit)).all())

    counts: Dict[int, int] = {}
    ids = [i.id for i in items]
    if ids:
        rows = session.exec(
            select(IssueComment.issue_id, func.count(IssueComment.id))
            .where(IssueComment.issue_id.in_(ids))
            .group_by(IssueComment.issue_id)
        ).all()
        counts = {int(iid): int(n or 0) for iid, n in rows}

    return IssuePage(items=items, comment_counts=counts, page=page, limit=limit, total=int(total or 0))


# -------------------------
# Comments
# -------------------------

def add_comment(
    session: Session,
    issue_id: int,
    user_id: int,
    text: str,
    *,
    now: Optional[datetime] = None,
) -> IssueComment:
    if not session.get(Issue, issue_id):
        raise NotFound("Issue not found")
    if not session.get(User, user_id):
        raise NotFound("User not found")

    comment = IssueComment(issue_id=issue_id, user_id=user_id, comment=text, created_at=now or local_now())
    with atomic(session):
        session.add(comment)
    session.refresh(comment)
    return comment


def list_comments(session: Session, issue_id: int) -> List[IssueComment]:
    if not session.get(Issue, issue_id):
        raise NotFound("Issue not found")
    return list(
        session.exec(
            select(IssueComment)
            .where(IssueComment.issue_id == issue_id)
            .order_by(IssueComment.created_at, IssueComment.id)
        ).all()
    )

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..errors import NotFound
from ..models.common import Priority
from ..models.issue import Issue, IssueCategory, IssueComment, IssueStatus
from ..models.user import User
from ..models.visitor import Visitor
from ..security import DELETE_ROLES, WRITE_ROLES, CurrentUser, get_current_user, require_roles
from ..services import issue_tracker
from .shared import PageParams, load_many, pagination, user_brief, visitor_brief

router = APIRouter(prefix="/issues", tags=["issues"])


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------
class IssueCreate(BaseModel):
    title: str = PydField(..., min_length=1)
    description: str = PydField(..., min_length=1)
    category: IssueCategory
    priority: Priority = Priority.NORMAL
    status: IssueStatus = IssueStatus.OPEN
    visitor_id: Optional[int] = PydField(None, ge=1)
    village: Optional[str] = None
    district: Optional[str] = None
    assigned_user_id: Optional[int] = PydField(None, ge=1)
    due_date: Optional[datetime] = None
    estimated_cost: Optional[float] = PydField(None, ge=0)
    department: Optional[str] = None
    tags: List[str] = PydField(default_factory=list)
    photos: List[str] = PydField(default_factory=list)


class IssueUpdate(BaseModel):
    title: Optional[str] = PydField(None, min_length=1)
    description: Optional[str] = PydField(None, min_length=1)
    category: Optional[IssueCategory] = None
    priority: Optional[Priority] = None
    status: Optional[IssueStatus] = None
    village: Optional[str] = None
    district: Optional[str] = None
    assigned_user_id: Optional[int] = PydField(None, ge=1)
    due_date: Optional[datetime] = None
    resolution: Optional[str] = None
    estimated_cost: Optional[float] = PydField(None, ge=0)
    actual_cost: Optional[float] = PydField(None, ge=0)
    department: Optional[str] = None
    tags: Optional[List[str]] = None
    photos: Optional[List[str]] = None


class CommentCreate(BaseModel):
    comment: str = PydField(..., min_length=1)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _serialize_issues(
    db: Session,
    issues: List[Issue],
    comment_counts: Optional[Dict[int, int]] = None,
) -> List[Dict[str, Any]]:
    visitors = load_many(db, Visitor, (i.visitor_id for i in issues))
    users = load_many(db, User, [i.created_by_id for i in issues] + [i.assigned_user_id for i in issues])

    out = []
    for i in issues:
        item = i.model_dump()
        item["tags"] = list(i.tags or [])
        item["photos"] = list(i.photos or [])
        item["visitor"] = visitor_brief(visitors.get(i.visitor_id))
        item["created_by"] = user_brief(users.get(i.created_by_id))
        item["assigned_to"] = user_brief(users.get(i.assigned_user_id))
        if comment_counts is not None:
            item["_count"] = {"comments": comment_counts.get(i.id, 0)}
        out.append(item)
    return out


def _serialize_comments(db: Session, comments: List[IssueComment]) -> List[Dict[str, Any]]:
    users = load_many(db, User, (c.user_id for c in comments))
    return [{**c.model_dump(), "user": user_brief(users.get(c.user_id))} for c in comments]


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def list_issues(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    paging: PageParams = Depends(),
    status: Optional[IssueStatus] = Query(None),
    category: Optional[IssueCategory] = Query(None),
    priority: Optional[Priority] = Query(None),
    village: Optional[str] = Query(None),
    district: Optional[str] = Query(None),
    assigned_to: Optional[int] = Query(None, alias="assignedTo"),
    visitor_id: Optional[int] = Query(None, alias="visitorId"),
) -> Dict[str, Any]:
    """
    Issues, most urgent first, then newest first.
    """
    result = issue_tracker.list_issues(
        db,
        page=paging.page,
        limit=paging.limit,
        status=status,
        category=category,
        priority=priority,
        village=village,
        district=district,
        assigned_to=assigned_to,
        visitor_id=visitor_id,
    )
    return {
        "issues": _serialize_issues(db, result.items, result.comment_counts),
        "pagination": pagination(result.page, result.limit, result.total),
    }


@router.post("", status_code=201)
def create_issue(
    *,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    payload: IssueCreate,
) -> Dict[str, Any]:
    issue = issue_tracker.create(db, payload.model_dump(), created_by_id=actor.user_id)
    return {"success": True, "issue": _serialize_issues(db, [issue])[0]}


@router.get("/{issue_id}")
def get_issue(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    issue_id: int,
) -> Dict[str, Any]:
    issue = db.get(Issue, issue_id)
    if not issue:
        raise NotFound("Issue not found")

    out = _serialize_issues(db, [issue])[0]
    out["comments"] = _serialize_comments(db, issue_tracker.list_comments(db, issue_id))
    return {"issue": out}


@router.put("/{issue_id}")
def update_issue(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    issue_id: int,
    payload: IssueUpdate,
) -> Dict[str, Any]:
    """
    Patch any field. Moving into RESOLVED/CLOSED stamps resolved_date;
    moving anywhere else clears it.
    """
    issue = issue_tracker.update(db, issue_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "issue": _serialize_issues(db, [issue])[0]}


@router.delete("/{issue_id}")
def delete_issue(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*DELETE_ROLES)),
    issue_id: int,
) -> Dict[str, Any]:
    issue_tracker.delete(db, issue_id)
    return {"success": True, "message": "Issue deleted successfully"}


@router.get("/{issue_id}/comments")
def list_comments(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    issue_id: int,
) -> Dict[str, Any]:
    return {"comments": _serialize_comments(db, issue_tracker.list_comments(db, issue_id))}


@router.post("/{issue_id}/comments", status_code=201)
def add_comment(
    *,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    issue_id: int,
    payload: CommentCreate,
) -> Dict[str, Any]:
    comment = issue_tracker.add_comment(db, issue_id, actor.user_id, payload.comment)
    return {"success": True, "comment": _serialize_comments(db, [comment])[0]}

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AnyUrl, BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..models.resume import Resume
from ..models.visitor import Visitor, VisitorCategory
from ..security import DELETE_ROLES, WRITE_ROLES, CurrentUser, get_current_user, require_roles
from ..services import resume_store
from .shared import PageParams, pagination

router = APIRouter(prefix="/resumes", tags=["resumes"])


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------
class ResumeUpload(BaseModel):
    visitor_id: int = PydField(..., ge=1)
    file_name: str = PydField(..., min_length=1)
    file_type: str = PydField(..., min_length=1)
    file_size: int = PydField(..., ge=1)
    file_url: Optional[AnyUrl] = None
    file_data: str = PydField(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None


class ResumeUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    file_url: Optional[AnyUrl] = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _visitor_profile(v: Optional[Visitor]) -> Optional[Dict[str, Any]]:
    if v is None:
        return None
    return {
        "id": v.id,
        "name": v.name,
        "phone": v.phone,
        "email": v.email,
        "village": v.village,
        "district": v.district,
        "category": v.category,
        "education": v.education,
        "skills": list(v.skills or []),
        "age": v.age,
        "occupation": v.occupation,
    }


def _serialize_resume(r: Resume, visitor: Optional[Visitor] = None, *, include_data: bool = False) -> Dict[str, Any]:
    out = r.model_dump(exclude=None if include_data else {"file_data"})
    out["visitor"] = _visitor_profile(visitor)
    return out


def _dump_url(value: Any) -> Optional[str]:
    return None if value is None else str(value)


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def list_resumes(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    paging: PageParams = Depends(),
    visitor_id: Optional[int] = Query(None, alias="visitorId"),
    category: Optional[VisitorCategory] = Query(None),
) -> Dict[str, Any]:
    """
    Active resumes only, newest first. File payloads are left out of the list.
    """
    result = resume_store.list_resumes(
        db,
        page=paging.page,
        limit=paging.limit,
        visitor_id=visitor_id,
        category=category,
    )
    return {
        "resumes": [_serialize_resume(r, result.visitors.get(r.visitor_id)) for r in result.items],
        "pagination": pagination(result.page, result.limit, result.total),
    }


@router.post("", status_code=201)
def upload_resume(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    payload: ResumeUpload,
) -> Dict[str, Any]:
    """
    Store a resume; any previously active resume of the visitor is deactivated.
    """
    data = payload.model_dump()
    data["file_url"] = _dump_url(payload.file_url)
    resume = resume_store.upload(db, data)
    return {"success": True, "resume": _serialize_resume(resume, db.get(Visitor, resume.visitor_id))}


@router.get("/{resume_id}")
def get_resume(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    resume_id: int,
) -> Dict[str, Any]:
    resume = resume_store.get(db, resume_id)
    return {"resume": _serialize_resume(resume, db.get(Visitor, resume.visitor_id), include_data=True)}


@router.put("/{resume_id}")
def update_resume(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*WRITE_ROLES)),
    resume_id: int,
    payload: ResumeUpdate,
) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    if "file_url" in changes:
        changes["file_url"] = _dump_url(payload.file_url)
    resume = resume_store.update_metadata(db, resume_id, changes)
    return {"success": True, "resume": _serialize_resume(resume, db.get(Visitor, resume.visitor_id))}


@router.delete("/{resume_id}")
def delete_resume(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*DELETE_ROLES)),
    resume_id: int,
) -> Dict[str, Any]:
    resume_store.soft_delete(db, resume_id)
    return {"success": True, "message": "Resume deleted successfully"}

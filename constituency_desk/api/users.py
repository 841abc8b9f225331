from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field as PydField
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..database import atomic, get_db
from ..errors import Conflict, NotFound
from ..models.user import User, UserRole
from ..security import ADMIN_ROLES, CurrentUser, get_current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------
class UserCreate(BaseModel):
    email: EmailStr
    name: str = PydField(..., min_length=2)
    role: UserRole = UserRole.STAFF
    phone: Optional[str] = None


def _serialize_user(u: User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "role": u.role,
        "phone": u.phone,
        "is_active": u.is_active,
        "created_at": u.created_at,
    }


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------
@router.get("")
def list_users(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    role: Optional[UserRole] = Query(None),
    include_inactive: bool = Query(False),
) -> Dict[str, Any]:
    """
    Staff directory: who appointments can be booked with and issues assigned to.
    """
    q = select(User)
    if not include_inactive:
        q = q.where(User.is_active == True)  # noqa: E712
    if role:
        q = q.where(User.role == role)
    users = db.exec(q.order_by(User.name, User.id)).all()
    return {"users": [_serialize_user(u) for u in users]}


@router.get("/me")
def whoami(
    *,
    db: Session = Depends(get_db),
    actor: CurrentUser = Depends(get_current_user),
) -> Dict[str, Any]:
    user = db.get(User, actor.user_id)
    if not user:
        raise NotFound("User not found")
    return {"user": _serialize_user(user)}


@router.post("", status_code=201)
def create_user(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_roles(*ADMIN_ROLES)),
    payload: UserCreate,
) -> Dict[str, Any]:
    email = str(payload.email).strip().lower()
    if db.exec(select(User).where(User.email == email)).first():
        raise Conflict("User with this email already exists")

    user = User(email=email, name=payload.name.strip(), role=payload.role, phone=payload.phone)
    try:
        with atomic(db):
            db.add(user)
    except IntegrityError as exc:
        raise Conflict("User with this email already exists") from exc
    db.refresh(user)

    logger.info("Created %s user %s", user.role, user.id)
    return {"success": True, "user": _serialize_user(user)}

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from fastapi import Query
from sqlmodel import Session, select

from ..models.user import User
from ..models.visitor import Visitor


class PageParams:
    """
    page/limit query parameters shared by every list route.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


def visitor_brief(v: Optional[Visitor]) -> Optional[Dict[str, Any]]:
    if v is None:
        return None
    return {
        "id": v.id,
        "name": v.name,
        "phone": v.phone,
        "village": v.village,
        "district": v.district,
        "category": v.category,
    }


def user_brief(u: Optional[User]) -> Optional[Dict[str, Any]]:
    if u is None:
        return None
    return {"id": u.id, "name": u.name, "role": u.role}


def load_many(db: Session, model: Any, ids: Iterable[Optional[int]]) -> Dict[int, Any]:
    """
    Batch-load rows by id for embedding brief references in list responses.
    """
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return {}
    return {row.id: row for row in db.exec(select(model).where(model.id.in_(wanted))).all()}

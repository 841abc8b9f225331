from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..database import get_db
from ..security import CurrentUser, get_current_user
from ..services import analytics

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/dashboard")
def dashboard(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
) -> Dict[str, Any]:
    return analytics.dashboard(db)

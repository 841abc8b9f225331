from __future__ import annotations

import io
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from ..database import get_db
from ..errors import ValidationFailed
from ..security import CurrentUser, get_current_user
from ..services import reports

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("")
def generate_report(
    *,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
    report_type: str = Query("comprehensive", alias="type"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    output: str = Query("json", alias="format"),
    village: Optional[str] = Query(None),
    district: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
) -> Any:
    """
    Aggregate report over records created in [startDate, endDate] (end of
    day inclusive). format=csv returns an attachment, one file per report type.
    """
    if output not in ("json", "csv"):
        raise ValidationFailed("format must be json or csv")

    filters = reports.build_filters(start_date, end_date, village=village, district=district, category=category)
    report: Dict[str, Any] = reports.generate(db, report_type, filters)

    if output == "json":
        return report

    export = reports.to_csv(report_type, report)
    return StreamingResponse(
        io.BytesIO(export.content.encode("utf-8")),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )

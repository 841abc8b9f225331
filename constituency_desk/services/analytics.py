from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from ..models.appointment import INACTIVE_APPOINTMENT_STATUSES, Appointment
from ..models.common import local_now
from ..models.issue import Issue, IssueStatus
from ..models.resume import Resume
from ..models.visit import Visit, VisitStatus
from ..models.visitor import YOUTH_CATEGORIES, Visitor

TREND_DAYS = 30


def _count(session: Session, query: Any) -> int:
    n = session.exec(select(func.count()).select_from(query.subquery())).one()
    return int(n or 0)


def dashboard(session: Session, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Headline counters for the office dashboard.

    "Today" is the office-local calendar day; the trend window is the
    30 days before today's midnight.
    """
    at = now or local_now()
    today = datetime.combine(at.date(), time.min)
    tomorrow = today + timedelta(days=1)
    window_start = today - timedelta(days=TREND_DAYS)

    todays_visits = select(Visit.id).where(Visit.check_in_time >= today, Visit.check_in_time < tomorrow)

    youth_with_resume = (
        select(Visitor.id)
        .where(
            Visitor.category.in_(YOUTH_CATEGORIES),
            Visitor.id.in_(select(Resume.visitor_id).where(Resume.is_active == True)),  # noqa: E712
        )
    )

    avg_satisfaction = session.exec(
        select(func.avg(Visit.satisfaction)).where(
            Visit.satisfaction.is_not(None),
            Visit.check_in_time >= window_start,
        )
    ).one()

    monthly_visits = _count(session, select(Visit.id).where(Visit.check_in_time >= window_start))
    monthly_issues = _count(session, select(Issue.id).where(Issue.created_at >= window_start))
    monthly_resolved = _count(
        session,
        select(Issue.id).where(Issue.created_at >= window_start, Issue.status == IssueStatus.RESOLVED),
    )

    return {
        "total_visitors": _count(session, select(Visitor.id).where(Visitor.is_active == True)),  # noqa: E712
        "today_visits": _count(session, todays_visits),
        "completed_visits": _count(session, todays_visits.where(Visit.status == VisitStatus.COMPLETED)),
        "active_queue": _count(session, select(Visit.id).where(Visit.status == VisitStatus.IN_PROGRESS)),
        "pending_issues": _count(
            session,
            select(Issue.id).where(Issue.status.in_((IssueStatus.OPEN, IssueStatus.IN_PROGRESS))),
        ),
        "today_appointments": _count(
            session,
            select(Appointment.id).where(
                Appointment.scheduled_date == at.date(),
                Appointment.status.not_in(INACTIVE_APPOINTMENT_STATUSES),
            ),
        ),
        "youth_with_resumes": _count(session, youth_with_resume),
        "average_satisfaction": float(avg_satisfaction or 0),
        "monthly_stats": {
            "visits": monthly_visits,
            "issues": monthly_issues,
            "resolved_issues": monthly_resolved,
            "resolution_rate": (monthly_resolved / monthly_issues * 100) if monthly_issues else 0,
        },
    }

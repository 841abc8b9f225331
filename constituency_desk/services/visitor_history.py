from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlmodel import Session, select

from ..errors import NotFound
from ..models.appointment import Appointment, AppointmentStatus
from ..models.common import local_now
from ..models.issue import Issue, IssueComment, IssueStatus
from ..models.resume import Resume
from ..models.visit import Visit, VisitStatus
from ..models.visitor import Visitor, VisitorCategory

DEFAULT_LIMIT = 50
RESUME_LIMIT = 5
RECENT_COMMENTS = 3


@dataclass
class VisitorHistory:
    visitor: Visitor
    visits: List[Visit]
    appointments: List[Appointment]
    issues: List[Issue]
    resumes: List[Resume]
    recent_comments: Dict[int, List[IssueComment]] = field(default_factory=dict)
    statistics: Dict[str, Any] = field(default_factory=dict)
    analytics: Dict[str, Any] = field(default_factory=dict)
    insights: List[Dict[str, str]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)


# -------------------------
# Aggregates
# -------------------------

def _rate(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


def _month_start(today: date, months_back: int) -> datetime:
    index = today.year * 12 + (today.month - 1) - months_back
    return datetime(index // 12, index % 12 + 1, 1)


def compute_statistics(visits: Sequence[Visit], appointments: Sequence[Appointment], issues: Sequence[Issue], resumes: Sequence[Resume]) -> Dict[str, Any]:
    rated = [v.satisfaction for v in visits if v.satisfaction]
    return {
        "total_visits": len(visits),
        "completed_visits": sum(1 for v in visits if v.status == VisitStatus.COMPLETED),
        "total_appointments": len(appointments),
        "completed_appointments": sum(1 for a in appointments if a.status == AppointmentStatus.COMPLETED),
        "total_issues": len(issues),
        "resolved_issues": sum(1 for i in issues if i.status == IssueStatus.RESOLVED),
        "in_progress_issues": sum(1 for i in issues if i.status == IssueStatus.IN_PROGRESS),
        "escalated_issues": sum(1 for i in issues if i.status == IssueStatus.ESCALATED),
        "has_resume": bool(resumes),
        "average_satisfaction": (sum(rated) / len(rated)) if rated else 0,
        "total_estimated_cost": sum(i.estimated_cost or 0 for i in issues),
        "total_actual_cost": sum(i.actual_cost or 0 for i in issues),
    }


def visit_frequency(visits: Sequence[Visit], now: datetime) -> Dict[str, int]:
    """
    Counts of visits since: 7 days ago, start of this month, start of the
    month 3 / 6 months back, and 1 January. Buckets overlap.
    """
    bounds = {
        "this_week": now - timedelta(days=7),
        "this_month": _month_start(now.date(), 0),
        "last_3_months": _month_start(now.date(), 3),
        "last_6_months": _month_start(now.date(), 6),
        "this_year": datetime(now.year, 1, 1),
    }
    return {name: sum(1 for v in visits if v.check_in_time >= since) for name, since in bounds.items()}


def issue_resolution_time(issues: Sequence[Issue]) -> Dict[str, Optional[float]]:
    days = [
        (i.resolved_date - i.created_at).total_seconds() / 86400
        for i in issues
        if i.status == IssueStatus.RESOLVED and i.resolved_date and i.created_at
    ]
    if not days:
        return {"average_resolution_days": 0, "fastest_resolution": None, "slowest_resolution": None}
    return {
        "average_resolution_days": sum(days) / len(days),
        "fastest_resolution": min(days),
        "slowest_resolution": max(days),
    }


def _insight(kind: str, message: str, category: str) -> Dict[str, str]:
    return {"type": kind, "message": message, "category": category}


def generate_insights(visitor: Visitor, stats: Dict[str, Any]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []

    total_visits = stats["total_visits"]
    if total_visits == 0:
        out.append(_insight("info", "This is a new visitor with no prior visits.", "engagement"))
    elif total_visits >= 10:
        out.append(_insight("success", "This is a highly engaged visitor with frequent interactions.", "engagement"))
    elif total_visits >= 5:
        out.append(_insight("info", "This visitor is moderately engaged with regular interactions.", "engagement"))

    if stats["total_issues"] > 0:
        rate = _rate(stats["resolved_issues"], stats["total_issues"])
        if rate >= 80:
            out.append(_insight(
                "success",
                f"High issue resolution rate ({rate:.1f}%) indicates effective problem-solving.",
                "issues",
            ))
        elif rate < 50:
            out.append(_insight("warning", f"Low issue resolution rate ({rate:.1f}%) requires attention.", "issues"))

        if stats["escalated_issues"] > 0:
            out.append(_insight(
                "warning",
                f"{stats['escalated_issues']} issue(s) have been escalated, indicating complex problems.",
                "issues",
            ))

    if visitor.category in (VisitorCategory.STUDENT, VisitorCategory.YOUTH):
        if stats["has_resume"]:
            out.append(_insight("success", "Youth visitor with resume on file - ready for employment opportunities.", "youth"))
        else:
            out.append(_insight(
                "info",
                "Youth visitor without resume - consider collecting for employment opportunities.",
                "youth",
            ))
        if visitor.education and visitor.skills:
            out.append(_insight(
                "success",
                "Comprehensive youth profile with education and skills data available.",
                "youth",
            ))

    avg = stats["average_satisfaction"]
    if avg >= 4:
        out.append(_insight("success", f"High satisfaction rating ({avg:.1f}/5) indicates positive experiences.", "satisfaction"))
    elif 0 < avg < 3:
        out.append(_insight("warning", f"Low satisfaction rating ({avg:.1f}/5) requires attention.", "satisfaction"))

    estimated = stats["total_estimated_cost"]
    if estimated > 0:
        variance = (stats["total_actual_cost"] - estimated) / estimated * 100
        if abs(variance) > 20:
            out.append(_insight("warning", f"Significant cost variance ({variance:.1f}%) in issue resolution.", "costs"))

    return out


# -------------------------
# Entry point
# -------------------------

def build_history(
    session: Session,
    visitor_id: int,
    *,
    limit: int = DEFAULT_LIMIT,
    now: Optional[datetime] = None,
) -> VisitorHistory:
    at = now or local_now()

    visitor = session.get(Visitor, visitor_id)
    if not visitor:
        raise NotFound("Visitor not found")

    visits = list(session.exec(
        select(Visit).where(Visit.visitor_id == visitor_id).order_by(Visit.check_in_time.desc()).limit(limit)
    ).all())
    appointments = list(session.exec(
        select(Appointment)
        .where(Appointment.visitor_id == visitor_id)
        .order_by(Appointment.scheduled_date.desc(), Appointment.start_time.desc())
        .limit(limit)
    ).all())
    issues = list(session.exec(
        select(Issue).where(Issue.visitor_id == visitor_id).order_by(Issue.created_at.desc()).limit(limit)
    ).all())
    resumes = list(session.exec(
        select(Resume)
        .where(Resume.visitor_id == visitor_id, Resume.is_active == True)  # noqa: E712
        .order_by(Resume.created_at.desc())
        .limit(RESUME_LIMIT)
    ).all())

    recent_comments: Dict[int, List[IssueComment]] = {}
    for issue in issues:
        recent_comments[issue.id] = list(session.exec(
            select(IssueComment)
            .where(IssueComment.issue_id == issue.id)
            .order_by(IssueComment.created_at.desc(), IssueComment.id.desc())
            .limit(RECENT_COMMENTS)
        ).all())

    stats = compute_statistics(visits, appointments, issues, resumes)

    purposes: Dict[str, int] = {}
    for v in visits:
        key = v.purpose or "General Visit"
        purposes[key] = purposes.get(key, 0) + 1

    categories: Dict[str, int] = {}
    for i in issues:
        key = str(getattr(i.category, "value", i.category))
        categories[key] = categories.get(key, 0) + 1

    summary = {
        "first_visit": visits[-1].check_in_time if visits else visitor.created_at,
        "last_visit": visitor.last_visit,
        "total_engagement": stats["total_visits"] + stats["total_appointments"] + stats["total_issues"],
        "resolution_rate": _rate(stats["resolved_issues"], stats["total_issues"]),
        "appointment_attendance_rate": _rate(stats["completed_appointments"], stats["total_appointments"]),
    }

    return VisitorHistory(
        visitor=visitor,
        visits=visits,
        appointments=appointments,
        issues=issues,
        resumes=resumes,
        recent_comments=recent_comments,
        statistics=stats,
        analytics={
            "visit_purposes": purposes,
            "issue_categories": categories,
            "visit_frequency": visit_frequency(visits, at),
            "issue_resolution_time": issue_resolution_time(issues),
        },
        insights=generate_insights(visitor, stats),
        summary=summary,
    )

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pandas as pd
from sqlalchemy import func
from sqlmodel import Session, select

from ..errors import ValidationFailed
from ..models.appointment import Appointment, AppointmentStatus
from ..models.common import local_now
from ..models.issue import Issue, IssueStatus
from ..models.resume import Resume
from ..models.user import User
from ..models.visit import Visit, VisitStatus
from ..models.visitor import YOUTH_CATEGORIES, Visitor

logger = logging.getLogger(__name__)

REPORT_TYPES = ("visitors", "appointments", "visits", "issues", "youth", "comprehensive")


@dataclass(frozen=True)
class ReportFilters:
    start: datetime
    end: datetime
    village: Optional[str] = None
    district: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class CsvExport:
    filename: str
    content: str


def build_filters(
    start_date: Optional[date],
    end_date: Optional[date],
    *,
    village: Optional[str] = None,
    district: Optional[str] = None,
    category: Optional[str] = None,
) -> ReportFilters:
    """
    Report windows are inclusive on both ends: end_date runs to 23:59:59.999999.
    """
    if not start_date or not end_date:
        raise ValidationFailed("Start date and end date are required")
    if end_date < start_date:
        raise ValidationFailed("End date must not be before start date")
    return ReportFilters(
        start=datetime.combine(start_date, time.min),
        end=datetime.combine(end_date, time.max),
        village=(village or "").strip() or None,
        district=(district or "").strip() or None,
        category=(category or "").strip() or None,
    )


# -------------------------
# Helpers
# -------------------------

def _tally(values: Iterable[Any]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for v in values:
        key = str(getattr(v, "value", v))
        out[key] = out.get(key, 0) + 1
    return out


def _pct(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _visitor_where(q: Any, f: ReportFilters, *, youth: bool = False) -> Any:
    q = q.where(
        Visitor.is_active == True,  # noqa: E712
        Visitor.created_at >= f.start,
        Visitor.created_at <= f.end,
    )
    if f.village:
        q = q.where(Visitor.village.ilike(f"%{f.village}%"))
    if f.district:
        q = q.where(Visitor.district.ilike(f"%{f.district}%"))
    if youth:
        q = q.where(Visitor.category.in_(YOUTH_CATEGORIES))
    elif f.category:
        q = q.where(Visitor.category == f.category)
    return q


def _via_visitor(q: Any, model: Any, f: ReportFilters) -> Any:
    q = q.where(model.created_at >= f.start, model.created_at <= f.end)
    if f.village or f.district:
        q = q.join(Visitor, Visitor.id == model.visitor_id)
        if f.village:
            q = q.where(Visitor.village.ilike(f"%{f.village}%"))
        if f.district:
            q = q.where(Visitor.district.ilike(f"%{f.district}%"))
    return q


def _lookup(session: Session, model: Any, ids: Iterable[Optional[int]]) -> Dict[int, Any]:
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return {}
    return {row.id: row for row in session.exec(select(model).where(model.id.in_(wanted))).all()}


def _counts(session: Session, model: Any, visitor_ids: List[int]) -> Dict[int, int]:
    if not visitor_ids:
        return {}
    rows = session.exec(
        select(model.visitor_id, func.count(model.id)).where(model.visitor_id.in_(visitor_ids)).group_by(model.visitor_id)
    ).all()
    return {int(vid): int(n or 0) for vid, n in rows}


def _brief_visitor(v: Optional[Visitor]) -> Optional[Dict[str, Any]]:
    if v is None:
        return None
    return {"id": v.id, "name": v.name, "village": v.village, "district": v.district, "category": v.category}


def _brief_user(u: Optional[User]) -> Optional[Dict[str, Any]]:
    if u is None:
        return None
    return {"id": u.id, "name": u.name, "role": u.role}


def _day(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else ""


def _stamp(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


# -------------------------
# Report builders
# -------------------------

def visitor_report(session: Session, f: ReportFilters) -> Dict[str, Any]:
    visitors = list(session.exec(_visitor_where(select(Visitor), f).order_by(Visitor.created_at)).all())
    ids = [v.id for v in visitors]
    visits, appointments, issues = (_counts(session, m, ids) for m in (Visit, Appointment, Issue))

    rows = []
    for v in visitors:
        row = v.model_dump()
        row["_count"] = {
            "visits": visits.get(v.id, 0),
            "appointments": appointments.get(v.id, 0),
            "issues": issues.get(v.id, 0),
        }
        rows.append(row)

    return {
        "visitors": rows,
        "category_stats": _tally(v.category for v in visitors),
        "village_stats": _tally(v.village for v in visitors),
        "district_stats": _tally(v.district for v in visitors),
        "summary": {
            "total_visitors": len(visitors),
            "total_records": len(visitors),
            "new_visitors": len(visitors),
            "average_age": _mean([v.age or 0 for v in visitors]),
            "total_visits": sum(v.visit_count or 0 for v in visitors),
        },
    }


def appointment_report(session: Session, f: ReportFilters) -> Dict[str, Any]:
    appointments = list(session.exec(_via_visitor(select(Appointment), Appointment, f).order_by(Appointment.start_time)).all())
    visitors = _lookup(session, Visitor, (a.visitor_id for a in appointments))
    users = _lookup(session, User, (a.user_id for a in appointments))

    status_stats = _tally(a.status for a in appointments)
    total = len(appointments)
    return {
        "appointments": [
            {**a.model_dump(), "visitor": _brief_visitor(visitors.get(a.visitor_id)), "user": _brief_user(users.get(a.user_id))}
            for a in appointments
        ],
        "status_stats": status_stats,
        "priority_stats": _tally(a.priority for a in appointments),
        "summary": {
            "total_appointments": total,
            "total_records": total,
            "completion_rate": _pct(status_stats.get(AppointmentStatus.COMPLETED.value, 0), total),
            "cancellation_rate": _pct(status_stats.get(AppointmentStatus.CANCELLED.value, 0), total),
            "no_show_rate": _pct(status_stats.get(AppointmentStatus.NO_SHOW.value, 0), total),
        },
    }


def visit_report(session: Session, f: ReportFilters) -> Dict[str, Any]:
    visits = list(session.exec(_via_visitor(select(Visit), Visit, f).order_by(Visit.check_in_time)).all())
    visitors = _lookup(session, Visitor, (v.visitor_id for v in visits))
    users = _lookup(session, User, (v.user_id for v in visits))

    status_stats = _tally(v.status for v in visits)
    rated = [v.satisfaction for v in visits if v.satisfaction]
    durations = [(v.check_out_time - v.check_in_time).total_seconds() / 60 for v in visits if v.check_out_time]
    total = len(visits)
    return {
        "visits": [
            {**v.model_dump(), "visitor": _brief_visitor(visitors.get(v.visitor_id)), "user": _brief_user(users.get(v.user_id))}
            for v in visits
        ],
        "status_stats": status_stats,
        "satisfaction_stats": _tally(rated),
        "summary": {
            "total_visits": total,
            "total_records": total,
            "completion_rate": _pct(status_stats.get(VisitStatus.COMPLETED.value, 0), total),
            "average_satisfaction": _mean(rated),
            "average_duration": _mean(durations),
        },
    }


def issue_report(session: Session, f: ReportFilters) -> Dict[str, Any]:
    q = select(Issue).where(Issue.created_at >= f.start, Issue.created_at <= f.end)
    if f.village:
        q = q.where(Issue.village.ilike(f"%{f.village}%"))
    if f.district:
        q = q.where(Issue.district.ilike(f"%{f.district}%"))
    issues = list(session.exec(q.order_by(Issue.created_at)).all())

    visitors = _lookup(session, Visitor, (i.visitor_id for i in issues))
    users = _lookup(session, User, [i.created_by_id for i in issues] + [i.assigned_user_id for i in issues])

    status_stats = _tally(i.status for i in issues)
    estimated = sum(i.estimated_cost or 0 for i in issues)
    actual = sum(i.actual_cost or 0 for i in issues)
    total = len(issues)
    return {
        "issues": [
            {
                **i.model_dump(),
                "visitor": _brief_visitor(visitors.get(i.visitor_id)),
                "created_by": _brief_user(users.get(i.created_by_id)),
                "assigned_to": _brief_user(users.get(i.assigned_user_id)),
            }
            for i in issues
        ],
        "category_stats": _tally(i.category for i in issues),
        "status_stats": status_stats,
        "priority_stats": _tally(i.priority for i in issues),
        "summary": {
            "total_issues": total,
            "total_records": total,
            "resolution_rate": _pct(status_stats.get(IssueStatus.RESOLVED.value, 0), total),
            "escalation_rate": _pct(status_stats.get(IssueStatus.ESCALATED.value, 0), total),
            "total_estimated_cost": estimated,
            "total_actual_cost": actual,
            "cost_variance": actual - estimated,
        },
    }


def youth_report(session: Session, f: ReportFilters) -> Dict[str, Any]:
    youth = list(session.exec(_visitor_where(select(Visitor), f, youth=True).order_by(Visitor.created_at)).all())
    ids = [v.id for v in youth]

    with_resume = set()
    if ids:
        with_resume = set(session.exec(
            select(Resume.visitor_id).where(Resume.visitor_id.in_(ids), Resume.is_active == True)  # noqa: E712
        ).all())
    visit_counts = _counts(session, Visit, ids)

    skills: Dict[str, int] = {}
    for v in youth:
        for skill in v.skills or []:
            skills[skill] = skills.get(skill, 0) + 1

    total = len(youth)
    covered = sum(1 for v in youth if v.id in with_resume)
    return {
        "youth_visitors": [{**v.model_dump(), "has_resume": v.id in with_resume} for v in youth],
        "education_stats": _tally(v.education or "Not Specified" for v in youth),
        "resume_stats": {"total_with_resumes": covered, "total_without_resumes": total - covered},
        "skill_stats": skills,
        "summary": {
            "total_youth": total,
            "total_records": total,
            "with_resumes": covered,
            "without_resumes": total - covered,
            "resume_coverage_rate": _pct(covered, total),
            "average_visits_per_youth": _mean([visit_counts.get(i, 0) for i in ids]),
        },
    }


def comprehensive_report(session: Session, f: ReportFilters) -> Dict[str, Any]:
    visitors = visitor_report(session, f)
    appointments = appointment_report(session, f)
    visits = visit_report(session, f)
    issues = issue_report(session, f)
    youth = youth_report(session, f)

    return {
        "visitor_report": visitors,
        "appointment_report": appointments,
        "visit_report": visits,
        "issue_report": issues,
        "youth_report": youth,
        "summary": {
            "total_records": sum(r["summary"]["total_records"] for r in (visitors, appointments, visits, issues)),
            "report_period": {"start": f.start, "end": f.end},
            "overview": {
                "new_visitors": visitors["summary"]["new_visitors"],
                "total_appointments": appointments["summary"]["total_appointments"],
                "total_visits": visits["summary"]["total_visits"],
                "total_issues": issues["summary"]["total_issues"],
                "total_youth": youth["summary"]["total_youth"],
            },
        },
    }


_BUILDERS: Dict[str, Callable[[Session, ReportFilters], Dict[str, Any]]] = {
    "visitors": visitor_report,
    "appointments": appointment_report,
    "visits": visit_report,
    "issues": issue_report,
    "youth": youth_report,
    "comprehensive": comprehensive_report,
}


def generate(session: Session, report_type: str, f: ReportFilters, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    builder = _BUILDERS.get(report_type)
    if builder is None:
        raise ValidationFailed(f"Unknown report type: {report_type}", details={"allowed": list(REPORT_TYPES)})

    report = builder(session, f)
    report["metadata"] = {
        "report_type": report_type,
        "date_range": {"start_date": f.start.date().isoformat(), "end_date": f.end.date().isoformat()},
        "generated_at": now or local_now(),
        "filters": {"village": f.village, "district": f.district, "category": f.category},
        "total_records": report.get("summary", {}).get("total_records", 0),
    }
    logger.info("Generated %s report (%s records)", report_type, report["metadata"]["total_records"])
    return report


# -------------------------
# CSV rendering
# -------------------------

def _visitor_rows(report: Dict[str, Any]) -> List[List[Any]]:
    return [
        [
            v["name"], v["phone"], v["email"] or "", v["village"], v["district"], v["state"],
            v["category"], v["age"] or "", v["gender"] or "", v["occupation"] or "", v["education"] or "",
            v["visit_count"], _day(v["last_visit"]), _day(v["created_at"]),
        ]
        for v in report["visitors"]
    ]


def _appointment_rows(report: Dict[str, Any]) -> List[List[Any]]:
    return [
        [
            a["title"], (a["visitor"] or {}).get("name", ""), (a["visitor"] or {}).get("village", ""),
            (a["user"] or {}).get("name", ""), a["scheduled_date"].isoformat(),
            a["start_time"].strftime("%H:%M"), a["end_time"].strftime("%H:%M"),
            a["status"], a["priority"], a["duration"], a["location"] or "",
        ]
        for a in report["appointments"]
    ]


def _visit_rows(report: Dict[str, Any]) -> List[List[Any]]:
    return [
        [
            (v["visitor"] or {}).get("name", ""), (v["visitor"] or {}).get("village", ""),
            (v["user"] or {}).get("name", ""), _stamp(v["check_in_time"]), _stamp(v["check_out_time"]),
            v["status"], v["purpose"] or "", v["satisfaction"] or "", v["notes"] or "",
        ]
        for v in report["visits"]
    ]


def _issue_rows(report: Dict[str, Any]) -> List[List[Any]]:
    return [
        [
            i["title"], i["category"], i["priority"], i["status"], i["village"] or "", i["district"] or "",
            (i["visitor"] or {}).get("name", ""), (i["created_by"] or {}).get("name", ""),
            (i["assigned_to"] or {}).get("name", ""), _day(i["created_at"]), _day(i["due_date"]),
            i["estimated_cost"] or "", i["actual_cost"] or "", i["resolution"] or "",
        ]
        for i in report["issues"]
    ]


def _youth_rows(report: Dict[str, Any]) -> List[List[Any]]:
    return [
        [
            v["name"], v["phone"], v["email"] or "", v["village"], v["district"], v["category"],
            v["age"] or "", v["gender"] or "", v["education"] or "", v["occupation"] or "",
            ", ".join(v["skills"] or []), "Yes" if v["has_resume"] else "No",
            v["visit_count"], _day(v["last_visit"]),
        ]
        for v in report["youth_visitors"]
    ]


CSV_LAYOUTS: Dict[str, tuple] = {
    "visitors": (
        ["Name", "Phone", "Email", "Village", "District", "State", "Category", "Age", "Gender",
         "Occupation", "Education", "Visit Count", "Last Visit", "Created At"],
        _visitor_rows,
    ),
    "appointments": (
        ["Title", "Visitor Name", "Village", "User Name", "Scheduled Date", "Start Time", "End Time",
         "Status", "Priority", "Duration", "Location"],
        _appointment_rows,
    ),
    "visits": (
        ["Visitor Name", "Village", "User Name", "Check In Time", "Check Out Time", "Status",
         "Purpose", "Satisfaction", "Notes"],
        _visit_rows,
    ),
    "issues": (
        ["Title", "Category", "Priority", "Status", "Village", "District", "Visitor Name", "Created By",
         "Assigned To", "Created Date", "Due Date", "Estimated Cost", "Actual Cost", "Resolution"],
        _issue_rows,
    ),
    "youth": (
        ["Name", "Phone", "Email", "Village", "District", "Category", "Age", "Gender", "Education",
         "Occupation", "Skills", "Has Resume", "Visit Count", "Last Visit"],
        _youth_rows,
    ),
}


def _cell(value: Any) -> Any:
    return getattr(value, "value", value)


def to_csv(report_type: str, report: Dict[str, Any], *, today: Optional[date] = None) -> CsvExport:
    """
    One CSV per report type: header row, then one row per record, every field quoted.
    """
    layout = CSV_LAYOUTS.get(report_type)
    if layout is None:
        raise ValidationFailed(f"CSV export is not supported for the {report_type} report")

    headers, row_builder = layout
    rows = [[_cell(c) for c in row] for row in row_builder(report)]
    frame = pd.DataFrame(rows, columns=headers)
    content = frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")

    stamp = (today or local_now().date()).isoformat()
    return CsvExport(filename=f"{report_type}_report_{stamp}.csv", content=content)

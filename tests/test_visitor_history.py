from __future__ import annotations

from datetime import date, datetime

from constituency_desk.models.issue import Issue, IssueCategory, IssueStatus
from constituency_desk.models.resume import Resume
from constituency_desk.models.visit import Visit, VisitStatus
from constituency_desk.models.visitor import Visitor, VisitorCategory
from constituency_desk.services import queue_engine, visitor_history

NOW = datetime(2030, 3, 4, 12)


def _visit(check_in: datetime, status=VisitStatus.COMPLETED, satisfaction=None) -> Visit:
    return Visit(visitor_id=1, user_id=1, check_in_time=check_in, status=status, satisfaction=satisfaction)


def _issue(status=IssueStatus.OPEN, created=None, resolved=None, estimated=None, actual=None) -> Issue:
    return Issue(
        title="Road repair",
        description="Potholes on the approach road",
        category=IssueCategory.ROADS,
        status=status,
        created_at=created or datetime(2030, 2, 1),
        resolved_date=resolved,
        estimated_cost=estimated,
        actual_cost=actual,
    )


def _visitor(category=VisitorCategory.FARMER, **kw) -> Visitor:
    return Visitor(name="Ganesh More", phone="9844444444", village="Wai", district="Satara", category=category, **kw)


def _resume() -> Resume:
    return Resume(visitor_id=1, file_name="cv.pdf", file_type="application/pdf", file_size=10, file_data="JVBERi0=")


def _messages(insights):
    return [i["message"] for i in insights]


def test_empty_statistics_are_zero():
    stats = visitor_history.compute_statistics([], [], [], [])
    assert stats == {
        "total_visits": 0,
        "completed_visits": 0,
        "total_appointments": 0,
        "completed_appointments": 0,
        "total_issues": 0,
        "resolved_issues": 0,
        "in_progress_issues": 0,
        "escalated_issues": 0,
        "has_resume": False,
        "average_satisfaction": 0,
        "total_estimated_cost": 0,
        "total_actual_cost": 0,
    }
    assert visitor_history._rate(0, 0) == 0.0
    assert visitor_history.issue_resolution_time([]) == {
        "average_resolution_days": 0,
        "fastest_resolution": None,
        "slowest_resolution": None,
    }


def test_month_start_wraps_into_previous_year():
    assert visitor_history._month_start(date(2030, 1, 15), 1) == datetime(2029, 12, 1)
    assert visitor_history._month_start(date(2030, 3, 4), 3) == datetime(2029, 12, 1)
    assert visitor_history._month_start(date(2030, 3, 4), 6) == datetime(2029, 9, 1)
    assert visitor_history._month_start(date(2030, 3, 31), 0) == datetime(2030, 3, 1)


def test_visit_frequency_buckets_overlap():
    visits = [
        _visit(datetime(2030, 3, 1, 10)),
        _visit(datetime(2030, 2, 28, 23)),
        _visit(datetime(2029, 12, 1, 0)),
        _visit(datetime(2029, 11, 30, 17)),
        _visit(datetime(2029, 8, 31, 9)),
    ]
    assert visitor_history.visit_frequency(visits, NOW) == {
        "this_week": 2,
        "this_month": 1,
        "last_3_months": 3,
        "last_6_months": 4,
        "this_year": 2,
    }


def test_resolution_time_counts_resolved_issues_only():
    issues = [
        _issue(IssueStatus.RESOLVED, created=datetime(2030, 2, 1), resolved=datetime(2030, 2, 3)),
        _issue(IssueStatus.RESOLVED, created=datetime(2030, 2, 1, 12), resolved=datetime(2030, 2, 2)),
        _issue(IssueStatus.CLOSED, created=datetime(2030, 1, 1), resolved=datetime(2030, 2, 1)),
        _issue(IssueStatus.OPEN),
    ]
    assert visitor_history.issue_resolution_time(issues) == {
        "average_resolution_days": 1.25,
        "fastest_resolution": 0.5,
        "slowest_resolution": 2.0,
    }


def test_statistics_count_by_status():
    visits = [
        _visit(datetime(2030, 3, 1), satisfaction=5),
        _visit(datetime(2030, 3, 2), satisfaction=4),
        _visit(datetime(2030, 3, 3), status=VisitStatus.IN_PROGRESS),
    ]
    issues = [
        _issue(IssueStatus.RESOLVED, estimated=100.0, actual=80.0),
        _issue(IssueStatus.IN_PROGRESS),
        _issue(IssueStatus.ESCALATED, estimated=50.0),
    ]
    stats = visitor_history.compute_statistics(visits, [], issues, [_resume()])

    assert stats["total_visits"] == 3
    assert stats["completed_visits"] == 2
    assert stats["resolved_issues"] == 1
    assert stats["in_progress_issues"] == 1
    assert stats["escalated_issues"] == 1
    assert stats["has_resume"] is True
    assert stats["average_satisfaction"] == 4.5
    assert stats["total_estimated_cost"] == 150.0
    assert stats["total_actual_cost"] == 80.0


def test_new_visitor_gets_single_engagement_insight():
    stats = visitor_history.compute_statistics([], [], [], [])
    assert visitor_history.generate_insights(_visitor(), stats) == [
        {"type": "info", "message": "This is a new visitor with no prior visits.", "category": "engagement"},
    ]


def test_youth_insights_depend_on_resume():
    stats = visitor_history.compute_statistics([], [], [], [])
    without = visitor_history.generate_insights(_visitor(VisitorCategory.STUDENT), stats)
    assert {"type": "info", "category": "youth",
            "message": "Youth visitor without resume - consider collecting for employment opportunities."} in without

    stats = visitor_history.compute_statistics([], [], [], [_resume()])
    profiled = _visitor(VisitorCategory.YOUTH, education="B.Com", skills=["Tally"])
    messages = _messages(visitor_history.generate_insights(profiled, stats))
    assert "Youth visitor with resume on file - ready for employment opportunities." in messages
    assert "Comprehensive youth profile with education and skills data available." in messages

    # Farmers get no youth insights even with a resume.
    farmer = visitor_history.generate_insights(_visitor(), stats)
    assert all(i["category"] != "youth" for i in farmer)


def test_cost_variance_above_twenty_percent_warns():
    over = [_issue(IssueStatus.RESOLVED, estimated=1000.0, actual=1300.0)]
    stats = visitor_history.compute_statistics([_visit(datetime(2030, 3, 1))], [], over, [])
    insights = visitor_history.generate_insights(_visitor(), stats)
    assert {"type": "warning", "category": "costs",
            "message": "Significant cost variance (30.0%) in issue resolution."} in insights
    assert "High issue resolution rate (100.0%) indicates effective problem-solving." in _messages(insights)

    close = [_issue(IssueStatus.OPEN, estimated=1000.0, actual=1100.0)]
    stats = visitor_history.compute_statistics([], [], close, [])
    insights = visitor_history.generate_insights(_visitor(), stats)
    assert all(i["category"] != "costs" for i in insights)
    assert "Low issue resolution rate (0.0%) requires attention." in _messages(insights)


def test_satisfaction_insights():
    happy = [_visit(datetime(2030, 3, 1), satisfaction=5), _visit(datetime(2030, 3, 2), satisfaction=4)]
    stats = visitor_history.compute_statistics(happy, [], [], [])
    assert "High satisfaction rating (4.5/5) indicates positive experiences." in _messages(
        visitor_history.generate_insights(_visitor(), stats)
    )

    unhappy = [_visit(datetime(2030, 3, 1), satisfaction=2)]
    stats = visitor_history.compute_statistics(unhappy, [], [], [])
    assert "Low satisfaction rating (2.0/5) requires attention." in _messages(
        visitor_history.generate_insights(_visitor(), stats)
    )


def test_history_of_visitor_without_activity(session, make_visitor):
    visitor = make_visitor()
    history = visitor_history.build_history(session, visitor.id, now=NOW)

    assert history.visits == []
    assert history.resumes == []
    assert history.summary["first_visit"] == visitor.created_at
    assert history.summary["total_engagement"] == 0
    assert history.summary["resolution_rate"] == 0
    assert history.summary["appointment_attendance_rate"] == 0
    assert history.analytics["visit_frequency"] == {
        "this_week": 0,
        "this_month": 0,
        "last_3_months": 0,
        "last_6_months": 0,
        "this_year": 0,
    }
    assert history.analytics["visit_purposes"] == {}


def test_history_uses_the_given_clock(session, users, make_visitor):
    visitor = make_visitor(category=VisitorCategory.STUDENT)
    staff = users["staff"]
    first = queue_engine.check_in(
        session, visitor_id=visitor.id, staff_user_id=staff.id, purpose="Scholarship", now=datetime(2030, 1, 20, 10)
    )
    queue_engine.check_out(session, first.id, satisfaction=5, now=datetime(2030, 1, 20, 10, 30))
    queue_engine.check_in(session, visitor_id=visitor.id, staff_user_id=staff.id, now=datetime(2030, 3, 3, 9))

    history = visitor_history.build_history(session, visitor.id, now=NOW)

    assert [v.check_in_time for v in history.visits] == [datetime(2030, 3, 3, 9), datetime(2030, 1, 20, 10)]
    assert history.summary["first_visit"] == datetime(2030, 1, 20, 10)
    assert history.statistics["completed_visits"] == 1
    assert history.analytics["visit_purposes"] == {"Scholarship": 1, "General Visit": 1}
    assert history.analytics["visit_frequency"] == {
        "this_week": 1,
        "this_month": 1,
        "last_3_months": 2,
        "last_6_months": 2,
        "this_year": 2,
    }
    assert "Youth visitor without resume - consider collecting for employment opportunities." in _messages(
        history.insights
    )

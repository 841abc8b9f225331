# Central import surface for SQLModel table registration.
# Keeping these imports ensures init_db() sees all models and creates tables.

from .common import Priority
from .user import User, UserRole
from .visitor import Gender, Visitor, VisitorCategory
from .appointment import Appointment, AppointmentStatus
from .visit import Visit, VisitStatus
from .issue import Issue, IssueCategory, IssueComment, IssueStatus
from .resume import Resume

__all__ = [
    "Priority",
    "User",
    "UserRole",
    "Visitor",
    "VisitorCategory",
    "Gender",
    "Appointment",
    "AppointmentStatus",
    "Visit",
    "VisitStatus",
    "Issue",
    "IssueCategory",
    "IssueComment",
    "IssueStatus",
    "Resume",
]

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from .common import local_now


class VisitStatus(str, Enum):
    """
    IN_PROGRESS is the only initial state (check-in).
    COMPLETED and CANCELLED are terminal; NO_SHOW is kept for imported data
    and is never reached from an open visit.
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class Visit(SQLModel, table=True):
    """
    One physical interaction at the office, bounded by check-in and check-out.

    The partial unique index makes "one open visit per visitor" a database
    guarantee: two concurrent check-ins cannot both commit.
    """

    __tablename__ = "visits"
    __table_args__ = (
        Index(
            "uq_visits_one_active_per_visitor",
            "visitor_id",
            unique=True,
            sqlite_where=text("status = 'IN_PROGRESS'"),
            postgresql_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    visitor_id: int = Field(foreign_key="visitors.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    appointment_id: Optional[int] = Field(default=None, foreign_key="appointments.id", index=True)

    check_in_time: datetime = Field(default_factory=local_now, index=True)
    check_out_time: Optional[datetime] = Field(default=None, index=True)

    status: VisitStatus = Field(default=VisitStatus.IN_PROGRESS, index=True)

    purpose: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    satisfaction: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=local_now)

    def is_open(self) -> bool:
        return self.status == VisitStatus.IN_PROGRESS

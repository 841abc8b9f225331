from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column
from sqlalchemy.types import JSON
from sqlmodel import Field, SQLModel

from .common import Priority, local_now


class IssueCategory(str, Enum):
    WATER = "WATER"
    ELECTRICITY = "ELECTRICITY"
    ROADS = "ROADS"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    HEALTH = "HEALTH"
    EDUCATION = "EDUCATION"
    EMPLOYMENT = "EMPLOYMENT"
    AGRICULTURE = "AGRICULTURE"
    PENSION = "PENSION"
    HOUSING = "HOUSING"
    SANITATION = "SANITATION"
    LAW_AND_ORDER = "LAW_AND_ORDER"
    OTHER = "OTHER"


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    ESCALATED = "ESCALATED"


# Entering one of these stamps resolved_date; leaving them clears it.
RESOLVED_STATUSES = (IssueStatus.RESOLVED, IssueStatus.CLOSED)


class Issue(SQLModel, table=True):
    """
    A constituent complaint or request tracked to resolution.

    tags/photos are JSON string lists; photos hold URLs only (storage lives elsewhere).
    """

    __tablename__ = "issues"

    id: Optional[int] = Field(default=None, primary_key=True)

    title: str
    description: str
    category: IssueCategory = Field(index=True)
    priority: Priority = Field(default=Priority.NORMAL, index=True)
    status: IssueStatus = Field(default=IssueStatus.OPEN, index=True)

    visitor_id: Optional[int] = Field(default=None, foreign_key="visitors.id", index=True)
    village: Optional[str] = Field(default=None, index=True)
    district: Optional[str] = Field(default=None, index=True)

    assigned_user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    created_by_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)

    due_date: Optional[datetime] = Field(default=None)
    resolved_date: Optional[datetime] = Field(default=None)
    resolution: Optional[str] = Field(default=None)

    estimated_cost: Optional[float] = Field(default=None)
    actual_cost: Optional[float] = Field(default=None)
    department: Optional[str] = Field(default=None)

    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    photos: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=local_now, index=True)
    updated_at: datetime = Field(default_factory=local_now)


class IssueComment(SQLModel, table=True):
    """
    Append-only discussion entry on an issue.
    """

    __tablename__ = "issue_comments"

    id: Optional[int] = Field(default=None, primary_key=True)

    issue_id: int = Field(foreign_key="issues.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    comment: str

    created_at: datetime = Field(default_factory=local_now, index=True)

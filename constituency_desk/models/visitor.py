from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column
from sqlalchemy.types import JSON
from sqlmodel import Field, SQLModel

from ..config import settings
from .common import local_now


class VisitorCategory(str, Enum):
    FARMER = "FARMER"
    STUDENT = "STUDENT"
    YOUTH = "YOUTH"
    WOMEN = "WOMEN"
    SENIOR_CITIZEN = "SENIOR_CITIZEN"
    BUSINESSMAN = "BUSINESSMAN"
    LABORER = "LABORER"
    TEACHER = "TEACHER"
    HEALTH_WORKER = "HEALTH_WORKER"
    GOVERNMENT_EMPLOYEE = "GOVERNMENT_EMPLOYEE"
    UNEMPLOYED = "UNEMPLOYED"
    OTHER = "OTHER"


YOUTH_CATEGORIES = (VisitorCategory.STUDENT, VisitorCategory.YOUTH, VisitorCategory.UNEMPLOYED)


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class Visitor(SQLModel, table=True):
    """
    A constituent registered at the office.

    Notes:
    - phone / aadhaar / voter_id are de-duplicated by the registry, not by the
      database (legacy imports carry duplicates that must stay readable).
    - visit_count and last_visit are only moved by queue check-in.
    - Never hard-deleted: is_active=False hides the record from lists and search.
    """

    __tablename__ = "visitors"

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str = Field(index=True)
    phone: str = Field(index=True)
    email: Optional[str] = Field(default=None, index=True)
    aadhaar: Optional[str] = Field(default=None, index=True)
    voter_id: Optional[str] = Field(default=None, index=True)

    # ---- Location ----
    village: str = Field(index=True)
    district: str = Field(index=True)
    state: str = Field(default=settings.default_state)
    address: Optional[str] = Field(default=None)

    # ---- Demographics ----
    category: VisitorCategory = Field(default=VisitorCategory.OTHER, index=True)
    age: Optional[int] = Field(default=None)
    gender: Optional[Gender] = Field(default=None)
    occupation: Optional[str] = Field(default=None)
    education: Optional[str] = Field(default=None)
    skills: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    notes: Optional[str] = Field(default=None)

    visit_count: int = Field(default=0)
    last_visit: Optional[datetime] = Field(default=None, index=True)

    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=local_now, index=True)
    updated_at: datetime = Field(default_factory=local_now, index=True)

    def record_check_in(self, at: datetime) -> None:
        self.visit_count = int(self.visit_count or 0) + 1
        self.last_visit = at
        self.updated_at = at

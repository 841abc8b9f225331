from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from .common import local_now


class UserRole(str, Enum):
    """
    Staff roles. Values are API-stable and are also carried in bearer tokens.

    VIEWER can read everything but never passes a write gate.
    """

    ADMIN = "ADMIN"
    POLITICIAN = "POLITICIAN"
    STAFF = "STAFF"
    VIEWER = "VIEWER"


class User(SQLModel, table=True):
    """
    A staff member: the person an appointment is booked with, who handles a
    visit, or who is assigned an issue.
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)

    email: str = Field(index=True, unique=True)
    name: str
    role: UserRole = Field(default=UserRole.STAFF, index=True)
    phone: Optional[str] = Field(default=None)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=local_now, index=True)

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from .common import Priority, local_now


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses that free the slot: they never take part in overlap checks.
INACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 240


class Appointment(SQLModel, table=True):
    """
    A pre-booked slot between a visitor and a staff member.

    Notes:
    - start_time/end_time are wall-clock timestamps derived from
      scheduled_date + start time + duration; the scheduler keeps them in sync.
    - Intervals are half-open: [start_time, end_time).
    """

    __tablename__ = "appointments"

    id: Optional[int] = Field(default=None, primary_key=True)

    title: str
    description: Optional[str] = Field(default=None)

    visitor_id: int = Field(foreign_key="visitors.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)

    scheduled_date: date = Field(index=True)
    start_time: datetime = Field(index=True)
    end_time: datetime = Field(index=True)
    duration: int = Field(default=30)

    location: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)

    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING, index=True)
    priority: Priority = Field(default=Priority.NORMAL, index=True)

    created_at: datetime = Field(default_factory=local_now, index=True)
    updated_at: datetime = Field(default_factory=local_now)

    def is_active(self) -> bool:
        return self.status not in INACTIVE_APPOINTMENT_STATUSES

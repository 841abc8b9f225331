from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from .common import local_now


class Resume(SQLModel, table=True):
    """
    A visitor's CV, kept for job-placement follow-ups.

    Uploading a new resume supersedes (deactivates) the previous one; the
    partial unique index guarantees a single active resume per visitor.
    """

    __tablename__ = "resumes"
    __table_args__ = (
        Index(
            "uq_resumes_one_active_per_visitor",
            "visitor_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    visitor_id: int = Field(foreign_key="visitors.id", index=True)

    file_name: str
    file_type: str
    file_size: int
    file_url: Optional[str] = Field(default=None)
    # Opaque encoded payload as received from the client.
    file_data: str

    title: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None)

    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=local_now, index=True)
    updated_at: datetime = Field(default_factory=local_now)

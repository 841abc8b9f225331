from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from .config import settings

logger = logging.getLogger(__name__)

# Postgres statements are cut off after this many ms; nothing else bounds a request.
STATEMENT_TIMEOUT_MS = 30_000


def _on_connect(target: Engine, *statements: str) -> None:
    @event.listens_for(target, "connect")
    def _run(dbapi_connection, connection_record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        for stmt in statements:
            cursor.execute(stmt)
        cursor.close()


def build_engine(database_url: str) -> Engine:
    """
    Engine for a SQLite or Postgres URL.

    SQLite:
      - the parent folder of a file database is created on demand
      - foreign_keys=ON (visits/appointments/issues reference visitors and users)
      - in-memory URLs share one connection so every session sees the same tables
    Postgres:
      - pre-ping pooled connections, per-statement timeout
    """
    url = make_url(database_url)
    kwargs: Dict[str, Any] = {}

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        if not in_memory:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        kwargs["connect_args"] = {"check_same_thread": False}
        if in_memory:
            kwargs["poolclass"] = StaticPool

        new_engine = create_engine(database_url, echo=False, **kwargs)
        _on_connect(
            new_engine,
            "PRAGMA journal_mode=WAL;",
            "PRAGMA synchronous=NORMAL;",
            "PRAGMA foreign_keys=ON;",
            "PRAGMA busy_timeout=5000;",
        )
        return new_engine

    new_engine = create_engine(database_url, echo=False, pool_pre_ping=True)
    if url.get_backend_name() == "postgresql":
        _on_connect(new_engine, f"SET statement_timeout = {STATEMENT_TIMEOUT_MS};")
    return new_engine


engine: Engine = build_engine(settings.resolved_database_url)


def register_models() -> None:
    """
    Import every table module so SQLModel.metadata knows about it, including
    the partial unique indexes declared in __table_args__.
    """
    from .models.user import User  # noqa: F401
    from .models.visitor import Visitor  # noqa: F401
    from .models.appointment import Appointment  # noqa: F401
    from .models.visit import Visit  # noqa: F401
    from .models.issue import Issue, IssueComment  # noqa: F401
    from .models.resume import Resume  # noqa: F401


def init_db(target: Optional[Engine] = None, create_tables: bool = True) -> None:
    """
    Create missing tables and indexes. Existing tables are never altered.
    """
    register_models()
    if create_tables:
        SQLModel.metadata.create_all(target or engine)
        logger.info("Database schema ready")


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session for routes: `db: Session = Depends(get_db)`.
    """
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Session for scripts: commit on success, roll back on error, always close.
    """
    with Session(engine) as session:
        with atomic(session):
            yield session


@contextmanager
def atomic(session: Session) -> Generator[Session, None, None]:
    """
    One unit of work on an existing session: commit when the block finishes,
    roll back (and re-raise) on any error.

    Check-in touches visit + appointment + visitor; all of it lands in one commit.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise

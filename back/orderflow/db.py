"""
Database handle and transaction boundary.

The engine is built by the process entry point (the FastAPI lifespan, a seed
script or a test fixture) and handed to whoever needs it. Request handlers get
a session through `get_session`, which reads the engine from `app.state`.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, text

from .settings import Settings

logger = logging.getLogger(__name__)


def create_db_engine(app_settings: Settings, **kwargs) -> Engine:
    url = app_settings.database_url
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def create_db_and_tables(engine: Engine) -> None:
    # Import models so every table is registered on the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def check_db_connection(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def get_session(request: Request) -> Iterator[Session]:
    """FastAPI dependency: one session (and one transaction) per request."""
    engine: Engine = request.app.state.engine
    with Session(engine) as session:
        yield session


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """
    Commit on success, roll back and re-raise on any error.

    Everything done inside the block is either fully visible after it or not
    at all, which is what lets callers publish events only after commit.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise

from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from . import models  # noqa: F401  (registers tables on SQLModel.metadata)
from .config import Settings


def make_engine(settings: Settings) -> Engine:
    url = settings.database_url
    if url.startswith("sqlite"):
        # in-memory SQLite must share one connection across threads
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite://"):
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_max,
        max_overflow=0,
        pool_timeout=settings.db_connect_timeout,
        pool_recycle=settings.db_idle_timeout,
        connect_args={"connect_timeout": settings.db_connect_timeout},
    )


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    s = Session(engine)
    try:
        yield s
    finally:
        s.close()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency: one session per request, rolled back unless committed."""
    with get_session(request.app.state.engine) as s:
        yield s

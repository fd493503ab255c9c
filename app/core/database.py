from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # Single shared connection so an in-memory database survives across sessions
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(
    str(settings.database_url),
    **_engine_kwargs(str(settings.database_url)),
)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a DB session.

    One session per request; grant writes commit inside the service layer
    so cache invalidation can run right after the commit.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

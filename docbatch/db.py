"""SQLAlchemy engine and session factory."""

from datetime import UTC, datetime

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docbatch.config import get_settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; every timestamp column is stored without tzinfo."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


def make_engine(database_url: str | None = None) -> Engine:
    url = database_url or get_settings().database_url
    if url in ("sqlite://", "sqlite:///:memory:"):
        # A single shared connection so every session (and thread) sees the same in-memory db.
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    # expire_on_commit=False: stores hand detached rows back to the batch loops.
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


# Module-level singletons, created lazily on first access via get_engine().
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        _engine = make_engine()
        _session_factory = make_session_factory(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


def create_tables(engine: Engine | None = None) -> None:
    """Create all tables. Idempotent: safe to run on every startup."""
    # Import models so Base.metadata includes them before create_all().
    import docbatch.models.batch_job  # noqa: F401
    import docbatch.models.extraction_request  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())

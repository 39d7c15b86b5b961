"""
Database configuration and session management
"""

from contextlib import contextmanager
from typing import Iterator, Optional
import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel
import structlog

from trainhub.core.config import get_settings
from trainhub.core.session_binder import BINDING_INFO_KEY, SessionBinder

logger = structlog.get_logger(__name__)
settings = get_settings()


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    **_engine_options(settings.DATABASE_URL),
)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


@contextmanager
def tenant_session() -> Iterator[Session]:
    """Session bound to the tenant of the current request context"""
    with SessionLocal() as session:
        SessionBinder(session).bind_from_context()
        try:
            yield session
        finally:
            session.info.pop(BINDING_INFO_KEY, None)


@contextmanager
def session_for_tenant(tenant_id: Optional[uuid.UUID]) -> Iterator[Session]:
    """Session bound to an explicit tenant, for work done before a principal exists"""
    with SessionLocal() as session:
        binder = SessionBinder(session)
        if tenant_id is None:
            binder.clear_tenant_context()
        else:
            binder.set_tenant_context(tenant_id)
        try:
            yield session
        finally:
            session.info.pop(BINDING_INFO_KEY, None)


@contextmanager
def system_session() -> Iterator[Session]:
    """Privileged session with isolation bypassed (bootstrap, registration, system users)"""
    with SessionLocal() as session:
        binder = SessionBinder(session, privileged=True)
        binder.clear_tenant_context()
        binder.enable_bypass()
        logger.info("system_session_opened")
        try:
            yield session
        finally:
            session.info.pop(BINDING_INFO_KEY, None)


def init_db():
    """Initialize database tables (tests and local development)"""
    import trainhub.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables created")


def get_session() -> Iterator[Session]:
    """Dependency to get a database session bound from the request context"""
    with tenant_session() as session:
        yield session


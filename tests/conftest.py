"""
Test configuration for pytest
"""

import pytest
import os
from types import SimpleNamespace
from typing import Generator

# Test environment variables
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"

from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

import trainhub.models  # noqa: F401
from trainhub.core.auth import create_access_token
from trainhub.core.database import engine, session_for_tenant, system_session
from trainhub.core.identity import resolve_principal
from trainhub.services.provisioning import bootstrap_platform, create_super_admin, register_tenant

PASSWORDS = {
    "admin@acme.com": "acme-password",
    "admin@globex.com": "globex-password",
    "root@trainhub.io": "root-password",
}


@pytest.fixture(scope="function")
def db():
    """Create a clean database for each test"""
    # Create all tables
    SQLModel.metadata.create_all(engine)

    yield engine

    # Cleanup
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def platform(db) -> SimpleNamespace:
    """Two tenants (acme, globex) with their admins, plus a super admin"""
    with system_session() as session:
        bootstrap_platform(session)
        acme, acme_admin = register_tenant(
            session,
            slug="acme",
            company_name="Acme Training",
            admin_email="admin@acme.com",
            admin_password=PASSWORDS["admin@acme.com"],
            admin_first_name="Ada",
            admin_last_name="Acme",
        )
        globex, globex_admin = register_tenant(
            session,
            slug="globex",
            company_name="Globex Academy",
            admin_email="admin@globex.com",
            admin_password=PASSWORDS["admin@globex.com"],
            admin_first_name="Gus",
            admin_last_name="Globex",
        )
        root = create_super_admin(session, "root@trainhub.io", PASSWORDS["root@trainhub.io"])
        session.commit()

    return SimpleNamespace(
        acme=acme,
        globex=globex,
        acme_admin=acme_admin,
        globex_admin=globex_admin,
        super_admin=root,
    )


@pytest.fixture
def acme_session(platform) -> Generator[Session, None, None]:
    with session_for_tenant(platform.acme.id) as session:
        yield session


@pytest.fixture
def globex_session(platform) -> Generator[Session, None, None]:
    with session_for_tenant(platform.globex.id) as session:
        yield session


def token_for(user) -> str:
    return create_access_token(user.id, user.tenant_id, email=user.email)


def headers_for(user) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def auth_headers():
    """Build a bearer header for a user row"""
    return headers_for


@pytest.fixture
def principals(platform) -> SimpleNamespace:
    """Principals resolved from freshly issued access tokens"""
    return SimpleNamespace(
        acme_admin=resolve_principal(token_for(platform.acme_admin)),
        globex_admin=resolve_principal(token_for(platform.globex_admin)),
        super_admin=resolve_principal(token_for(platform.super_admin)),
    )


@pytest.fixture
def client(db) -> Generator[TestClient, None, None]:
    from trainhub.main import app

    with TestClient(app) as test_client:
        yield test_client

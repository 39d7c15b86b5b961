"""
Login, token refresh with rotation, logout and password change
"""

from datetime import datetime
from typing import Optional
import uuid

import structlog
from sqlalchemy import update
from sqlmodel import Session, select

from trainhub.core.auth import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    hash_refresh_token,
    verify_password,
)
from trainhub.core.config import get_settings
from trainhub.core.database import session_for_tenant, system_session, tenant_session
from trainhub.core.errors import InvalidCredential, Unauthenticated
from trainhub.core.identity import load_principal
from trainhub.core.principal import Principal
from trainhub.core.session_binder import SessionBinder
from trainhub.models import Tenant, User, UserSession
from trainhub.schemas.token import TokenResponse, TokenUser

logger = structlog.get_logger(__name__)
settings = get_settings()

INVALID_LOGIN = "Invalid credentials"
INVALID_REFRESH = "Invalid or expired refresh token"


def issue_tokens(
    session: Session,
    principal: Principal,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> TokenResponse:
    """Issue an access/refresh pair and record the refresh session"""
    roles = sorted(principal.roles)
    access_token = create_access_token(
        principal.user_id, principal.tenant_id, email=principal.email, roles=roles
    )
    refresh_token = create_refresh_token(principal.user_id, principal.tenant_id)

    session.add(UserSession(
        tenant_id=principal.tenant_id,
        user_id=principal.user_id,
        refresh_token_hash=hash_refresh_token(refresh_token),
        expires_at=datetime.utcnow() + settings.refresh_token_lifetime,
        ip_address=ip_address,
        user_agent=user_agent,
    ))

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=int(settings.access_token_lifetime.total_seconds()),
        user=TokenUser(
            id=principal.user_id,
            email=principal.email,
            tenant_id=principal.tenant_id,
            roles=roles,
        ),
    )


def _authenticate(session: Session, tenant_id: Optional[uuid.UUID], email: str, password: str) -> User:
    user = session.exec(
        select(User).where(User.email == email, User.tenant_id == tenant_id)
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login_failed", tenant_id=str(tenant_id) if tenant_id else None)
        raise InvalidCredential(INVALID_LOGIN)
    if not user.is_active:
        raise Unauthenticated("User account is inactive")
    if tenant_id is None and not user.is_system_user:
        raise InvalidCredential(INVALID_LOGIN)
    return user


def login(
    email: str,
    password: str,
    tenant_slug: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> TokenResponse:
    """Authenticate against a tenant (by slug) or as a system user (no slug)"""
    if tenant_slug is None:
        with system_session() as session:
            return _login(session, None, email, password, ip_address, user_agent)

    with session_for_tenant(None) as session:
        tenant = session.exec(select(Tenant).where(Tenant.slug == tenant_slug.strip().lower())).first()
        if tenant is None:
            logger.info("login_failed", reason="unknown_tenant")
            raise InvalidCredential(INVALID_LOGIN)
        if not tenant.is_usable:
            raise Unauthenticated("Organization account is suspended")
        tenant_id = tenant.id
        SessionBinder(session).set_tenant_context(tenant_id)
        return _login(session, tenant_id, email, password, ip_address, user_agent)


def _login(session, tenant_id, email, password, ip_address, user_agent) -> TokenResponse:
    user = _authenticate(session, tenant_id, email, password)
    user.last_login_at = datetime.utcnow()
    session.add(user)

    principal = load_principal(session, user.id, tenant_id)
    tokens = issue_tokens(session, principal, ip_address, user_agent)
    session.commit()

    logger.info("login_succeeded", user_id=str(user.id), tenant_id=str(tenant_id) if tenant_id else None)
    return tokens


def refresh(
    refresh_token: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> TokenResponse:
    """Exchange a refresh token for a new pair; the presented token is revoked"""
    claims = decode_refresh_token(refresh_token)
    user_id, tenant_id = claims["sub"], claims["tenant_id"]

    opener = system_session() if tenant_id is None else session_for_tenant(tenant_id)
    with opener as session:
        user_session = session.exec(
            select(UserSession).where(
                UserSession.refresh_token_hash == hash_refresh_token(refresh_token)
            )
        ).first()

        if user_session is None or user_session.user_id != user_id:
            raise InvalidCredential(INVALID_REFRESH)

        if user_session.is_revoked:
            # A rotated token was presented again; end every session of the user
            logger.warning("refresh_token_reuse_detected", user_id=str(user_id))
            _revoke_all(session, user_id)
            session.commit()
            raise InvalidCredential(INVALID_REFRESH)

        if not user_session.is_valid:
            raise InvalidCredential(INVALID_REFRESH)

        principal = load_principal(session, user_id, tenant_id)

        user_session.is_revoked = True
        user_session.revoked_at = datetime.utcnow()
        session.add(user_session)
        tokens = issue_tokens(session, principal, ip_address, user_agent)
        session.commit()

    logger.info("token_refreshed", user_id=str(user_id))
    return tokens


def _revoke_all(session: Session, user_id: uuid.UUID) -> int:
    result = session.exec(
        update(UserSession)
        .where(UserSession.user_id == user_id, UserSession.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=datetime.utcnow())
    )
    return result.rowcount


def logout(principal: Principal, refresh_token: Optional[str] = None) -> int:
    """Revoke one refresh session of the principal, or all of them"""
    with tenant_session() as session:
        if refresh_token is None:
            revoked = _revoke_all(session, principal.user_id)
        else:
            result = session.exec(
                update(UserSession)
                .where(
                    UserSession.user_id == principal.user_id,
                    UserSession.refresh_token_hash == hash_refresh_token(refresh_token),
                )
                .values(is_revoked=True, revoked_at=datetime.utcnow())
            )
            revoked = result.rowcount
        session.commit()

    logger.info("logout", user_id=str(principal.user_id), revoked=revoked)
    return revoked


def change_password(principal: Principal, current_password: str, new_password: str) -> None:
    """Change the principal's password and end every refresh session"""
    with tenant_session() as session:
        user = session.get(User, principal.user_id)
        if user is None:
            raise Unauthenticated("User not found")
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredential("Current password is incorrect")

        user.password_hash = hash_password(new_password)
        user.updated_at = datetime.utcnow()
        session.add(user)
        _revoke_all(session, user.id)
        session.commit()

    logger.info("password_changed", user_id=str(principal.user_id))

"""
JWT Authentication utilities
"""

from datetime import datetime, timedelta
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from typing import Dict, Optional
import hashlib
import uuid

from trainhub.core.config import get_settings, parse_duration
from trainhub.core.errors import ExpiredCredential, InvalidCredential

settings = get_settings()
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.PASSWORD_HASH_ROUNDS,
)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

__all__ = [
    "create_access_token",
    "create_refresh_token",
    "decode_access_token",
    "decode_refresh_token",
    "hash_password",
    "verify_password",
    "hash_refresh_token",
    "parse_duration",
]


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def hash_refresh_token(token: str) -> str:
    """Refresh tokens are stored as a SHA-256 digest, never in clear"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(
    token_type: str,
    user_id: uuid.UUID,
    tenant_id: Optional[uuid.UUID],
    secret: str,
    lifetime: timedelta,
    extra: Optional[Dict] = None,
) -> str:
    now = datetime.utcnow()
    to_encode = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id) if tenant_id else None,
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + lifetime,
    }
    if extra:
        to_encode.update(extra)
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    user_id: uuid.UUID,
    tenant_id: Optional[uuid.UUID],
    email: str = "",
    roles: Optional[list] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a short-lived access token; roles are informational only"""
    return _encode(
        ACCESS_TOKEN_TYPE,
        user_id,
        tenant_id,
        settings.JWT_ACCESS_SECRET,
        expires_delta or settings.access_token_lifetime,
        {"email": email, "roles": list(roles or [])},
    )


def create_refresh_token(
    user_id: uuid.UUID,
    tenant_id: Optional[uuid.UUID],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a refresh token, signed with its own secret"""
    return _encode(
        REFRESH_TOKEN_TYPE,
        user_id,
        tenant_id,
        settings.JWT_REFRESH_SECRET,
        expires_delta or settings.refresh_token_lifetime,
    )


def _decode(token: str, secret: str, expected_type: str) -> Dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise ExpiredCredential()
    except JWTError:
        raise InvalidCredential()

    if payload.get("type") != expected_type:
        raise InvalidCredential(f"Expected a {expected_type} token")

    try:
        payload["sub"] = uuid.UUID(payload["sub"])
        tenant_id = payload.get("tenant_id")
        payload["tenant_id"] = uuid.UUID(tenant_id) if tenant_id else None
    except (KeyError, TypeError, ValueError):
        raise InvalidCredential("Malformed token claims")

    return payload


def decode_access_token(token: str) -> Dict:
    """Verify signature, expiry and type of an access token"""
    return _decode(token, settings.JWT_ACCESS_SECRET, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> Dict:
    return _decode(token, settings.JWT_REFRESH_SECRET, REFRESH_TOKEN_TYPE)

"""
Bearer token handling and caller identity.

Authentication itself is owned by an upstream identity service. This module
only verifies the JWT it issues and turns the claims into a ``Principal``
that the order pipeline uses to re-validate ownership.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"
KNOWN_ROLES = frozenset({ROLE_ADMIN, ROLE_CUSTOMER})


class SecurityError(Exception):
    """Base exception for token errors."""

    def __init__(self, message: str, code: str = "SECURITY_ERROR", **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Raised when a bearer token is missing, malformed or expired."""

    pass


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as asserted by the identity service."""

    user_id: UUID
    role: str = ROLE_CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def owns(self, user_id: UUID) -> bool:
        return self.user_id == user_id


def create_access_token(
    user_id: UUID,
    role: str = ROLE_CUSTOMER,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed access token.

    Production tokens come from the identity service; this is used by
    tooling and tests that need a token the API accepts.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=30)),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Principal:
    """
    Verify a bearer token and extract the caller.

    Raises:
        TokenError: If the token is empty, invalid, expired or lacks claims
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error_type=type(e).__name__)
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    if payload.get("type", "access") != "access":
        raise TokenError("Unexpected token type", code="TOKEN_INVALID")

    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token missing subject", code="TOKEN_INVALID")

    try:
        user_id = UUID(str(subject))
    except ValueError as e:
        raise TokenError("Invalid subject format", code="TOKEN_INVALID") from e

    role = str(payload.get("role") or ROLE_CUSTOMER).lower()
    if role not in KNOWN_ROLES:
        raise TokenError("Unknown role", code="TOKEN_INVALID", role=role)

    return Principal(user_id=user_id, role=role)

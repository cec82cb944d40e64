"""
FastAPI dependencies for authentication, authorization and services.

Identity is taken from a bearer JWT; the token's ``sub`` is the user id and
its ``role`` claim the role. Services are built per request over the shared
session factory.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, set_user_id
from storefront.core.security import Principal, TokenError, decode_access_token
from storefront.database.connection import get_session_factory
from storefront.services.orders.service import OrderService
from storefront.services.payments.gateway import PaymentGateway, get_payment_gateway
from storefront.services.payments.service import PaymentService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Validate the bearer token and return the caller's identity.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "message": "Could not validate credentials",
            "code": "UNAUTHORIZED",
        },
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        principal = decode_access_token(credentials.credentials)
    except TokenError as e:
        logger.warning(
            "Authentication failed: token rejected",
            error_code=e.code,
        )
        raise credentials_exception from e

    set_user_id(str(principal.user_id))
    return principal


async def require_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """
    Raises:
        HTTPException: 403 if the caller is not an admin
    """
    if not principal.is_admin:
        logger.warning(
            "Access denied: Insufficient permissions",
            user_id=str(principal.user_id),
            user_role=principal.role,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Insufficient permissions",
                "code": "FORBIDDEN",
            },
        )
    return principal


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_order_service(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> OrderService:
    return OrderService(session_factory, settings=settings)


def get_payment_service(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_db_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
) -> PaymentService:
    return PaymentService(session_factory, gateway=gateway, settings=settings)


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
CurrentAdmin = Annotated[Principal, Depends(require_admin)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]

"""
Shared API dependencies: caller identity, service access and error mapping
"""
from fastapi import Depends, Header, HTTPException, Request, status
from typing import Optional

from sql_sentinel.core.exceptions import (
    BlockedError,
    ConnectionConfigError,
    ConnectionInactiveError,
    ConnectionNotFoundError,
    DriverUnavailableError,
    DuplicateConnectionError,
    PermissionUpdateError,
    PoolConstructionError,
    PoolExhaustedError,
    SentinelError
)
from sql_sentinel.models import Role
from sql_sentinel.services.sentinel_service import Principal, SentinelService

# Most specific first
ERROR_STATUS = [
    (BlockedError, status.HTTP_403_FORBIDDEN),
    (ConnectionNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateConnectionError, status.HTTP_409_CONFLICT),
    (ConnectionInactiveError, status.HTTP_409_CONFLICT),
    (ConnectionConfigError, status.HTTP_400_BAD_REQUEST),
    (PermissionUpdateError, status.HTTP_400_BAD_REQUEST),
    (DriverUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PoolConstructionError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PoolExhaustedError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for_error(exc: SentinelError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(exc: SentinelError) -> HTTPException:
    return HTTPException(status_code=status_for_error(exc), detail=str(exc))


def get_service(request: Request) -> SentinelService:
    """The application's SentinelService, created at startup."""
    return request.app.state.sentinel


def get_principal(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None)
) -> Principal:
    """
    Caller identity set by the authenticating proxy.

    Authentication itself happens upstream; requests without both headers
    are refused.
    """
    if x_user_id is None or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity"
        )
    try:
        role = Role.parse(x_user_role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}"
        )
    return Principal(user_id=x_user_id, role=role)


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Required role: ADMIN"
        )
    return principal

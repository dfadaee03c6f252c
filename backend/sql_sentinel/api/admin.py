"""
Admin API Routes - role permissions, target databases, grants and pools
"""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from sql_sentinel.api.deps import get_service, http_error, require_admin
from sql_sentinel.core.exceptions import SentinelError
from sql_sentinel.models import DbConnection, Operation, Role
from sql_sentinel.schemas import (
    ConnectionCreate,
    ConnectionResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    ConnectionUpdate,
    PermissionUpdate
)
from sql_sentinel.services.sentinel_service import Principal, SentinelService

router = APIRouter()


# ============================================================================
# PERMISSIONS
# ============================================================================

@router.get("/permissions")
def list_permissions(
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    """All role permissions grouped by role."""
    return service.list_permissions()


@router.put("/permissions")
def update_permission(
    request: PermissionUpdate,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    """Update one role permission."""
    try:
        role = Role.parse(request.role)
        operation = Operation(request.operation.strip().upper())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        permission = service.update_permission(role, operation, request.is_allowed, request.max_rows)
    except SentinelError as e:
        raise http_error(e)

    return {
        "success": True,
        "message": "Permission updated successfully",
        "is_allowed": permission.allowed,
        "max_rows": permission.max_rows
    }


# ============================================================================
# CONNECTIONS
# ============================================================================

@router.get("/connections", response_model=List[ConnectionResponse])
def list_connections(
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    return service.list_connections()


@router.post("/connections", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
def create_connection(
    request: ConnectionCreate,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    """Register a target database. The creator is granted access."""
    try:
        return service.create_connection(creator_id=principal.user_id, **request.model_dump())
    except SentinelError as e:
        raise http_error(e)


@router.put("/connections/{connection_id}", response_model=ConnectionResponse)
def update_connection(
    connection_id: int,
    request: ConnectionUpdate,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    try:
        return service.update_connection(connection_id, **request.model_dump(exclude_unset=True))
    except SentinelError as e:
        raise http_error(e)


@router.delete("/connections/{connection_id}")
def delete_connection(
    connection_id: int,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    try:
        service.delete_connection(connection_id)
    except SentinelError as e:
        raise http_error(e)
    return {"success": True, "message": "Database connection deleted successfully"}


@router.post("/connections/test", response_model=ConnectionTestResponse)
def test_new_connection(
    request: ConnectionTestRequest,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    """Probe unsaved connection details."""
    config = DbConnection(**request.model_dump(exclude={"password"}))
    result = service.test_connection(config=config, password=request.password)
    return ConnectionTestResponse(connected=result.success, message=result.message, latency_ms=result.latency_ms)


@router.post("/connections/{connection_id}/test", response_model=ConnectionTestResponse)
def test_connection(
    connection_id: int,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    try:
        result = service.test_connection(connection_id=connection_id)
    except SentinelError as e:
        raise http_error(e)
    return ConnectionTestResponse(connected=result.success, message=result.message, latency_ms=result.latency_ms)


@router.post("/connections/{connection_id}/invalidate")
def invalidate_pool(
    connection_id: int,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    """Drop the live pool so the next query reconnects."""
    closed = service.invalidate_pool(connection_id)
    return {"success": True, "pool_closed": closed}


@router.post("/connections/{connection_id}/grant/{user_id}")
def grant_access(
    connection_id: int,
    user_id: int,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    try:
        service.grant_access(user_id, connection_id)
    except SentinelError as e:
        raise http_error(e)
    return {"success": True, "message": "Access granted"}


@router.delete("/connections/{connection_id}/grant/{user_id}")
def revoke_access(
    connection_id: int,
    user_id: int,
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    try:
        service.revoke_access(user_id, connection_id)
    except SentinelError as e:
        raise http_error(e)
    return {"success": True, "message": "Access revoked"}


# ============================================================================
# POOLS
# ============================================================================

@router.get("/pools")
def list_pools(
    principal: Principal = Depends(require_admin),
    service: SentinelService = Depends(get_service)
):
    """Live pools keyed by connection id."""
    return {str(connection_id): details for connection_id, details in service.active_pools().items()}

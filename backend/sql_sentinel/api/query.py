"""
Query API Routes - validation, execution and schema for the calling user
"""
from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from sql_sentinel.api.deps import get_principal, get_service, http_error
from sql_sentinel.core.deadline import Deadline
from sql_sentinel.core.exceptions import SentinelError
from sql_sentinel.models import ConnectionType
from sql_sentinel.schemas import (
    ExecuteRequest,
    ExecuteResponse,
    RolePermissionsResponse,
    TableSchemaResponse,
    ValidateRequest,
    ValidateResponse
)
from sql_sentinel.services.sentinel_service import Principal, SentinelService

router = APIRouter()


@router.post("/validate", response_model=ValidateResponse)
def validate_query(
    request: ValidateRequest,
    principal: Principal = Depends(get_principal),
    service: SentinelService = Depends(get_service)
):
    """Run the gatekeeper without executing anything."""
    engine = None
    if request.db_type:
        try:
            engine = ConnectionType.parse(request.db_type)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        result = service.validate_and_prepare(
            request.sql,
            principal.role,
            table_allow_list=request.allowed_tables,
            engine=engine,
            connection_id=request.connection_id,
            known_tables=request.known_tables
        )
    except SentinelError as e:
        raise http_error(e)

    return ValidateResponse(**asdict(result))


@router.post("/execute", response_model=ExecuteResponse)
def execute_query(
    request: ExecuteRequest,
    principal: Principal = Depends(get_principal),
    service: SentinelService = Depends(get_service)
):
    """
    Validate and execute SQL against a target database.

    Every call is audited, including refused ones.
    """
    deadline = Deadline(request.timeout_seconds) if request.timeout_seconds else None
    outcome = service.execute_request(
        principal,
        request.connection_id,
        request.sql,
        table_allow_list=request.allowed_tables,
        deadline=deadline
    )

    if not outcome.success:
        raise http_error(outcome.exception)

    result = outcome.result
    return ExecuteResponse(
        sql=outcome.sql,
        sanitized_sql=outcome.sanitized_sql,
        columns=result.columns,
        rows=result.rows,
        row_count=result.row_count,
        rows_affected=result.rows_affected,
        execution_time_ms=result.execution_time_ms,
        truncated=result.truncated
    )


@router.get("/schema/{connection_id}", response_model=List[TableSchemaResponse])
def get_schema(
    connection_id: int,
    principal: Principal = Depends(get_principal),
    service: SentinelService = Depends(get_service)
):
    """Tables and columns of a database the caller may target."""
    try:
        tables = service.schema_for(principal, connection_id)
    except SentinelError as e:
        raise http_error(e)
    return [asdict(table) for table in tables]


@router.get("/databases")
def list_databases(
    principal: Principal = Depends(get_principal),
    service: SentinelService = Depends(get_service)
):
    """Active databases the caller may target."""
    return service.accessible_databases(principal)


@router.get("/permissions", response_model=RolePermissionsResponse)
def my_permissions(
    principal: Principal = Depends(get_principal),
    service: SentinelService = Depends(get_service)
):
    """Operations the caller's role may run."""
    summary = service.permissions_for(principal.role)
    return RolePermissionsResponse(
        role=principal.role.value,
        allowed_operations=sorted(op.value for op in summary.allowed_operations),
        max_rows=summary.max_rows
    )

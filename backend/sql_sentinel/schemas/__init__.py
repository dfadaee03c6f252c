"""
Schemas Package
"""
from sql_sentinel.schemas.query import (
    ValidateRequest, ValidateResponse,
    ExecuteRequest, ExecuteResponse,
    ColumnResponse, TableSchemaResponse, RolePermissionsResponse
)
from sql_sentinel.schemas.admin import (
    PermissionUpdate,
    ConnectionCreate, ConnectionUpdate, ConnectionResponse,
    ConnectionTestRequest, ConnectionTestResponse
)

__all__ = [
    # Query
    "ValidateRequest", "ValidateResponse",
    "ExecuteRequest", "ExecuteResponse",
    "ColumnResponse", "TableSchemaResponse", "RolePermissionsResponse",
    # Admin
    "PermissionUpdate",
    "ConnectionCreate", "ConnectionUpdate", "ConnectionResponse",
    "ConnectionTestRequest", "ConnectionTestResponse"
]

"""
Models Package - Export all SQLAlchemy models
"""
from sql_sentinel.models.permission import (
    Role,
    Operation,
    RolePermission,
    ROLE_HIERARCHY,
    CONFIGURABLE_OPERATIONS,
    has_role
)
from sql_sentinel.models.connection import DbConnection, ConnectionType, POOL_IDENTITY_FIELDS
from sql_sentinel.models.access import UserDbGrant

__all__ = [
    # Policy
    "Role",
    "Operation",
    "RolePermission",
    "ROLE_HIERARCHY",
    "CONFIGURABLE_OPERATIONS",
    "has_role",

    # Connections
    "DbConnection",
    "ConnectionType",
    "POOL_IDENTITY_FIELDS",
    "UserDbGrant",
]

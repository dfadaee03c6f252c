"""
Connections Package - Target database pool management
"""
from sql_sentinel.connections.connection_manager import (
    ConnectionManager,
    ConnectionTestResult,
    PoolLease,
    db_config_loader,
    load_connection_config
)

__all__ = [
    "ConnectionManager",
    "ConnectionTestResult",
    "PoolLease",
    "db_config_loader",
    "load_connection_config",
]

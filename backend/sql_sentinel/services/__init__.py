"""
Services Package
"""
from sql_sentinel.services.query_executor import QueryExecutor
from sql_sentinel.services.schema_introspector import SchemaIntrospector
from sql_sentinel.services.sentinel_service import SentinelService, Principal, ExecutionOutcome

__all__ = [
    "QueryExecutor", "SchemaIntrospector",
    "SentinelService", "Principal", "ExecutionOutcome"
]

"""
Schema Introspector - lists tables and columns of a target database
"""
from typing import List

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
import structlog

from sql_sentinel.core.exceptions import ExecutionError
from sql_sentinel.connections.connection_manager import ConnectionManager
from sql_sentinel.connections.connectors import TableSchema

logger = structlog.get_logger()


class SchemaIntrospector:
    """Reads the engine's native catalog through a pooled connection."""

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager

    def get_schema(self, connection_id: int) -> List[TableSchema]:
        """
        Tables sorted by name, columns in ordinal order.

        Raises:
            ExecutionError: If the catalog query fails
        """
        with self.connection_manager.connection(connection_id) as lease:
            try:
                tables = lease.connector.introspect(lease.connection)
            except DBAPIError as e:
                logger.error("schema_introspection_failed", connection_id=connection_id, error=str(e.orig))
                raise ExecutionError(f"Failed to read schema: {e.orig}") from e
            except SQLAlchemyError as e:
                logger.error("schema_introspection_failed", connection_id=connection_id, error=str(e))
                raise ExecutionError(f"Failed to read schema: {e}") from e

        tables = sorted(tables, key=lambda table: table.table_name)
        logger.info("schema_introspected", connection_id=connection_id, tables=len(tables))
        return tables

    def table_names(self, connection_id: int) -> List[str]:
        return [table.table_name for table in self.get_schema(connection_id)]

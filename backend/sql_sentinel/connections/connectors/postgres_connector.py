"""
PostgreSQL Database Connector
"""
from typing import List

from sqlalchemy import text
from sqlalchemy.engine import Connection

from sql_sentinel.core.deadline import Deadline
from sql_sentinel.connections.connectors.base_connector import BaseConnector, TableSchema
from sql_sentinel.models.connection import ConnectionType


class PostgreSQLConnector(BaseConnector):
    """PostgreSQL database connector implementation."""

    engine_type = ConnectionType.POSTGRESQL
    drivername = "postgresql+psycopg2"
    driver_module = "psycopg2"

    SCHEMA_SQL = """
        SELECT table_name, column_name, data_type
        FROM information_schema.columns
        WHERE table_schema = current_schema()
        ORDER BY table_name, ordinal_position
    """

    def limit_rows(self, sql: str, max_rows: int) -> str:
        return self.subquery_limit(sql, max_rows)

    def introspect(self, connection: Connection) -> List[TableSchema]:
        """List tables and columns of the current schema."""
        result = connection.execute(text(self.SCHEMA_SQL))
        return self.group_columns(result.fetchall())

    def apply_deadline(self, connection: Connection, deadline: Deadline) -> None:
        """Set a transaction-scoped statement_timeout and bind cancel()."""
        remaining_ms = deadline.remaining_ms()
        if remaining_ms is not None:
            # SET LOCAL lasts until the transaction ends
            connection.execute(text(f"SET LOCAL statement_timeout = {max(1, remaining_ms)}"))
        deadline.bind(self.dbapi_connection(connection).cancel)

    def clear_deadline(self, connection: Connection, deadline: Deadline) -> None:
        deadline.unbind(self.dbapi_connection(connection).cancel)

"""
MySQL Database Connector
"""
from typing import List

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError
import structlog

from sql_sentinel.core.deadline import Deadline
from sql_sentinel.connections.connectors.base_connector import BaseConnector, TableSchema
from sql_sentinel.models.connection import ConnectionType

logger = structlog.get_logger()


class MySQLConnector(BaseConnector):
    """MySQL database connector implementation."""

    engine_type = ConnectionType.MYSQL
    drivername = "mysql+pymysql"
    driver_module = "pymysql"

    SCHEMA_SQL = """
        SELECT TABLE_NAME, COLUMN_NAME, DATA_TYPE
        FROM INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_SCHEMA = DATABASE()
        ORDER BY TABLE_NAME, ORDINAL_POSITION
    """

    def limit_rows(self, sql: str, max_rows: int) -> str:
        # MySQL requires an alias on derived tables
        return self.subquery_limit(sql, max_rows)

    def introspect(self, connection: Connection) -> List[TableSchema]:
        """List tables and columns of the connected database."""
        result = connection.execute(text(self.SCHEMA_SQL))
        return self.group_columns(result.fetchall())

    def apply_deadline(self, connection: Connection, deadline: Deadline) -> None:
        """Cap SELECT execution time for this session."""
        remaining_ms = deadline.remaining_ms()
        if remaining_ms is None:
            return
        try:
            connection.execute(text(f"SET SESSION MAX_EXECUTION_TIME = {max(1, remaining_ms)}"))
        except DBAPIError as e:
            # MariaDB has no MAX_EXECUTION_TIME; the query runs unbounded
            logger.warning("mysql_statement_timeout_unsupported", error=str(e.orig))
            connection.rollback()

    def clear_deadline(self, connection: Connection, deadline: Deadline) -> None:
        if deadline.remaining_ms() is None:
            return
        try:
            connection.execute(text("SET SESSION MAX_EXECUTION_TIME = 0"))
        except DBAPIError as e:
            logger.warning("mysql_statement_timeout_reset_failed", error=str(e.orig))
            connection.invalidate()

"""
Oracle Database Connector
"""
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Connection, URL

from sql_sentinel.core.deadline import Deadline
from sql_sentinel.connections.connectors.base_connector import (
    BaseConnector,
    ConnectionSettings,
    TableSchema
)
from sql_sentinel.models.connection import ConnectionType


class OracleConnector(BaseConnector):
    """Oracle database connector implementation (python-oracledb thin mode)."""

    engine_type = ConnectionType.ORACLE
    drivername = "oracle+oracledb"
    driver_module = "oracledb"
    probe_sql = "SELECT 1 FROM DUAL"

    SCHEMA_SQL = """
        SELECT c.table_name, c.column_name, c.data_type
        FROM user_tab_columns c
        JOIN user_tables t ON t.table_name = c.table_name
        ORDER BY c.table_name, c.column_id
    """

    def build_url(self, settings: ConnectionSettings) -> URL:
        """Oracle databases are addressed by service name."""
        return URL.create(
            self.drivername,
            username=settings.username,
            password=settings.password,
            host=settings.host,
            port=settings.port or 1521,
            query={"service_name": settings.database_name}
        )

    def connect_args(self) -> Dict[str, Any]:
        return {'tcp_connect_timeout': float(self.connect_timeout)}

    def limit_rows(self, sql: str, max_rows: int) -> str:
        # Oracle takes no AS before a subquery alias; ROWNUM needs none
        return f"SELECT * FROM (\n{sql}\n) WHERE ROWNUM <= {int(max_rows)}"

    def introspect(self, connection: Connection) -> List[TableSchema]:
        """List tables and columns owned by the connected user."""
        result = connection.execute(text(self.SCHEMA_SQL))
        return self.group_columns(result.fetchall())

    def apply_deadline(self, connection: Connection, deadline: Deadline) -> None:
        """Set the round-trip call timeout and bind cancel()."""
        dbapi_conn = self.dbapi_connection(connection)
        remaining_ms = deadline.remaining_ms()
        if remaining_ms is not None:
            dbapi_conn.call_timeout = max(1, remaining_ms)
        deadline.bind(dbapi_conn.cancel)

    def clear_deadline(self, connection: Connection, deadline: Deadline) -> None:
        dbapi_conn = self.dbapi_connection(connection)
        deadline.unbind(dbapi_conn.cancel)
        dbapi_conn.call_timeout = 0

"""
SQLite Database Connector
"""
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Connection, URL

from sql_sentinel.core.deadline import Deadline
from sql_sentinel.connections.connectors.base_connector import (
    BaseConnector,
    ColumnInfo,
    ConnectionSettings,
    TableSchema
)
from sql_sentinel.models.connection import ConnectionType

# Virtual machine instructions between deadline checks
PROGRESS_INTERVAL = 1000


class SQLiteConnector(BaseConnector):
    """SQLite database connector implementation."""

    engine_type = ConnectionType.SQLITE
    drivername = "sqlite"
    driver_module = "sqlite3"

    def build_url(self, settings: ConnectionSettings) -> URL:
        return URL.create(self.drivername, database=settings.database_name)

    def connect_args(self) -> Dict[str, Any]:
        return {'timeout': self.connect_timeout, 'check_same_thread': False}

    def limit_rows(self, sql: str, max_rows: int) -> str:
        return self.subquery_limit(sql, max_rows)

    def introspect(self, connection: Connection) -> List[TableSchema]:
        """List tables and views with their columns."""
        tables = connection.execute(text(
            "SELECT name FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name"
        )).fetchall()

        schema = []
        for (table_name,) in tables:
            quoted = table_name.replace('"', '""')
            columns = connection.execute(text(f'PRAGMA table_info("{quoted}")')).fetchall()
            schema.append(TableSchema(
                table_name=table_name,
                # cid, name, type, notnull, dflt_value, pk
                columns=[ColumnInfo(name=col[1], type=col[2] or "") for col in columns]
            ))
        return schema

    def apply_deadline(self, connection: Connection, deadline: Deadline) -> None:
        """Abort the running statement once the deadline passes or is cancelled."""
        dbapi_conn = self.dbapi_connection(connection)
        dbapi_conn.set_progress_handler(lambda: 1 if deadline.expired else 0, PROGRESS_INTERVAL)
        deadline.bind(dbapi_conn.interrupt)

    def clear_deadline(self, connection: Connection, deadline: Deadline) -> None:
        dbapi_conn = self.dbapi_connection(connection)
        deadline.unbind(dbapi_conn.interrupt)
        dbapi_conn.set_progress_handler(None, 0)

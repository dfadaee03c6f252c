"""
Query Executor - runs validated SQL on a pooled connection
"""
from datetime import date, datetime, time as dt_time, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence
import time
import uuid

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
import structlog

from sql_sentinel.config import settings
from sql_sentinel.core.deadline import Deadline
from sql_sentinel.core.exceptions import ExecutionError, QueryTimeoutError
from sql_sentinel.connections.connection_manager import ConnectionManager, PoolLease
from sql_sentinel.connections.connectors import QueryResult

logger = structlog.get_logger()

# Statement runs as written; no bind-parameter parsing of ':' or '%'
RAW_EXECUTION_OPTIONS = {"no_parameters": True}


def normalize_value(value: Any) -> Any:
    """Convert a driver value into a JSON-friendly one."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, uuid.UUID):
        return str(value)
    if hasattr(value, "read"):
        # Oracle CLOB/BLOB
        return normalize_value(value.read())
    return str(value)


def normalize_row(columns: Sequence[str], row: Sequence[Any]) -> Dict[str, Any]:
    return {column: normalize_value(value) for column, value in zip(columns, row)}


class QueryExecutor:
    """
    Executes SQL through the connection manager.

    The connection is released on every exit path. Row-returning results
    are cut to max_rows whatever the SQL itself asked for.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        default_timeout_seconds: Optional[float] = None,
        default_max_rows: Optional[int] = None
    ):
        self.connection_manager = connection_manager
        self.default_timeout_seconds = default_timeout_seconds
        self.default_max_rows = default_max_rows or settings.DEFAULT_MAX_ROWS

    def execute(
        self,
        connection_id: int,
        sql: str,
        max_rows: Optional[int],
        deadline: Optional[Deadline] = None
    ) -> QueryResult:
        """
        Run SQL on a target database.

        Args:
            connection_id: Target database config id
            sql: Validated SQL text
            max_rows: Row cap; non-positive values use the configured default
            deadline: Time budget and cancel switch; a default timeout
                applies when omitted

        Raises:
            QueryTimeoutError: If the deadline expires or is cancelled
            ExecutionError: If the database rejects the statement
        """
        if max_rows is None or max_rows <= 0:
            max_rows = self.default_max_rows

        if deadline is None and self.default_timeout_seconds:
            deadline = Deadline(self.default_timeout_seconds)

        if deadline is not None and deadline.expired:
            raise QueryTimeoutError("Query deadline expired before execution")

        with self.connection_manager.connection(connection_id) as lease:
            return self._run(lease, sql, max_rows, deadline)

    def _run(self, lease: PoolLease, sql: str, max_rows: int, deadline: Optional[Deadline]) -> QueryResult:
        connection = lease.connection
        connector = lease.connector
        start_time = time.time()

        try:
            if deadline is not None:
                connector.apply_deadline(connection, deadline)

            result = connection.exec_driver_sql(sql, execution_options=RAW_EXECUTION_OPTIONS)

            if result.returns_rows:
                columns = list(result.keys())
                fetched = result.fetchmany(max_rows + 1)
                result.close()
                # INSERT ... RETURNING and writing CTEs return rows too
                connection.commit()
                truncated = len(fetched) > max_rows
                rows = [normalize_row(columns, row) for row in fetched[:max_rows]]
                execution_time_ms = int((time.time() - start_time) * 1000)

                if truncated:
                    logger.info("query_result_truncated", connection_id=lease.connection_id, max_rows=max_rows)

                return QueryResult(
                    columns=columns,
                    rows=rows,
                    row_count=len(rows),
                    execution_time_ms=execution_time_ms,
                    truncated=truncated
                )

            rows_affected = max(result.rowcount, 0)
            connection.commit()
            execution_time_ms = int((time.time() - start_time) * 1000)

            return QueryResult(
                columns=[],
                rows=[],
                row_count=0,
                execution_time_ms=execution_time_ms,
                rows_affected=rows_affected
            )

        except DBAPIError as e:
            execution_time_ms = int((time.time() - start_time) * 1000)
            if deadline is not None and deadline.expired:
                logger.warning("query_timeout", connection_id=lease.connection_id, duration_ms=execution_time_ms)
                raise QueryTimeoutError(
                    f"Query cancelled or exceeded its time limit after {execution_time_ms} ms",
                    execution_time_ms
                ) from e
            logger.error(
                "query_execution_error",
                connection_id=lease.connection_id,
                query=sql[:200],
                error=str(e.orig)
            )
            raise ExecutionError(str(e.orig), execution_time_ms) from e

        except SQLAlchemyError as e:
            execution_time_ms = int((time.time() - start_time) * 1000)
            logger.error("query_execution_error", connection_id=lease.connection_id, query=sql[:200], error=str(e))
            raise ExecutionError(str(e), execution_time_ms) from e

        finally:
            if deadline is not None:
                self._clear_deadline(lease, deadline)

    @staticmethod
    def _clear_deadline(lease: PoolLease, deadline: Deadline) -> None:
        try:
            lease.connector.clear_deadline(lease.connection, deadline)
        except SQLAlchemyError as e:
            # Session state is unknown; do not hand it back to the pool
            logger.warning("query_deadline_reset_failed", connection_id=lease.connection_id, error=str(e))
            lease.connection.invalidate()

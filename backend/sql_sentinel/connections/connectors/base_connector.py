"""
Base Connector Interface for Multi-Database Support
All engine connectors must implement this interface
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field
import importlib.util

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, URL
from sqlalchemy.exc import SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool
import structlog

from sql_sentinel.core.deadline import Deadline
from sql_sentinel.core.exceptions import (
    DriverUnavailableError,
    PoolConstructionError,
    PoolExhaustedError
)
from sql_sentinel.models.connection import ConnectionType

logger = structlog.get_logger()


@dataclass
class ColumnInfo:
    """Column metadata."""
    name: str
    type: str
    description: str = ""


@dataclass
class TableSchema:
    """Table with its columns. Descriptions are not read from the catalog."""
    table_name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    description: str = ""


@dataclass
class QueryResult:
    """Normalized query execution result."""
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: int
    rows_affected: int = 0
    truncated: bool = False


@dataclass
class ConnectionSettings:
    """Decrypted, engine-neutral view of a DbConnection."""
    connection_id: Optional[int]
    engine: ConnectionType
    database_name: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def describe(self) -> str:
        if self.host:
            return f"{self.engine.value}://{self.host}:{self.port}/{self.database_name}"
        return f"{self.engine.value}:{self.database_name}"


class BaseConnector(ABC):
    """
    Capability implementation for one database engine.

    Pools are SQLAlchemy engines backed by a bounded QueuePool. Subclasses
    supply the URL, driver options, catalog queries, row-limit idiom and
    statement timeout hooks.
    """

    engine_type: ConnectionType
    drivername: str
    driver_module: str
    probe_sql = "SELECT 1"

    def __init__(
        self,
        pool_min_size: int = 1,
        pool_max_size: int = 5,
        pool_timeout: int = 30,
        connect_timeout: int = 10
    ):
        """
        Initialize connector.

        Args:
            pool_min_size: Connections kept open in each pool
            pool_max_size: Upper bound on connections per pool
            pool_timeout: Seconds to wait for a free connection
            connect_timeout: Connection establishment timeout in seconds
        """
        self.pool_min_size = max(1, pool_min_size)
        self.pool_max_size = max(self.pool_min_size, pool_max_size)
        self.pool_timeout = pool_timeout
        self.connect_timeout = connect_timeout

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """Check that the DBAPI driver can be imported."""
        return importlib.util.find_spec(self.driver_module) is not None

    def ensure_available(self) -> None:
        if not self.is_available():
            raise DriverUnavailableError(
                self.engine_type.value,
                f"python package '{self.driver_module}' is not installed"
            )

    # ------------------------------------------------------------------
    # Pool lifecycle
    # ------------------------------------------------------------------

    def build_url(self, settings: ConnectionSettings) -> URL:
        """SQLAlchemy URL for a target database."""
        return URL.create(
            self.drivername,
            username=settings.username,
            password=settings.password,
            host=settings.host,
            port=settings.port,
            database=settings.database_name
        )

    def connect_args(self) -> Dict[str, Any]:
        return {'connect_timeout': self.connect_timeout}

    def create_pool(self, settings: ConnectionSettings) -> Engine:
        """
        Build a pool and open its first connection.

        Raises:
            DriverUnavailableError: If the driver is missing
            PoolConstructionError: If the database cannot be reached
        """
        self.ensure_available()

        try:
            engine = create_engine(
                self.build_url(settings),
                poolclass=QueuePool,
                pool_size=self.pool_min_size,
                max_overflow=self.pool_max_size - self.pool_min_size,
                pool_timeout=self.pool_timeout,
                pool_pre_ping=True,
                connect_args=self.connect_args()
            )
        except (SQLAlchemyError, ImportError) as e:
            raise PoolConstructionError(f"Failed to configure {self.engine_type.value} pool: {e}") from e

        try:
            with engine.connect() as conn:
                conn.execute(text(self.probe_sql))
        except SQLAlchemyError as e:
            engine.dispose()
            raise PoolConstructionError(
                f"Failed to connect to {settings.describe()}: {getattr(e, 'orig', None) or e}"
            ) from e

        return engine

    def acquire_connection(self, pool: Engine) -> Connection:
        """Borrow one connection from the pool."""
        try:
            return pool.connect()
        except PoolTimeoutError as e:
            raise PoolExhaustedError(
                f"No {self.engine_type.value} connection available within {self.pool_timeout}s"
            ) from e
        except SQLAlchemyError as e:
            raise PoolConstructionError(
                f"Failed to open {self.engine_type.value} connection: {getattr(e, 'orig', None) or e}"
            ) from e

    def release_connection(self, connection: Connection) -> None:
        """Return a connection to its pool. Open transactions are rolled back."""
        connection.close()

    def close_pool(self, pool: Engine) -> None:
        pool.dispose()

    # ------------------------------------------------------------------
    # Dialect-specific behaviour
    # ------------------------------------------------------------------

    @abstractmethod
    def limit_rows(self, sql: str, max_rows: int) -> str:
        """Wrap a SELECT so that it returns at most max_rows rows."""
        pass

    @abstractmethod
    def introspect(self, connection: Connection) -> List[TableSchema]:
        """Enumerate tables and columns visible to the connection."""
        pass

    def apply_deadline(self, connection: Connection, deadline: Deadline) -> None:
        """Bound the next statement by the deadline. No-op by default."""
        pass

    def clear_deadline(self, connection: Connection, deadline: Deadline) -> None:
        """Undo apply_deadline before the connection goes back to the pool."""
        pass

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def dbapi_connection(connection: Connection):
        """The driver-level connection behind a SQLAlchemy connection."""
        return connection.connection.dbapi_connection

    @staticmethod
    def group_columns(rows: Iterable[Tuple[str, str, str]]) -> List[TableSchema]:
        """Fold (table, column, type) rows into TableSchema objects sorted by table."""
        tables: Dict[str, TableSchema] = {}
        for table_name, column_name, data_type in rows:
            table = tables.setdefault(table_name, TableSchema(table_name=table_name))
            table.columns.append(ColumnInfo(name=column_name, type=str(data_type or "")))
        return [tables[name] for name in sorted(tables)]

    @staticmethod
    def subquery_limit(sql: str, max_rows: int) -> str:
        """
        ANSI-ish LIMIT wrapper shared by engines that support it.

        The inner SQL sits on its own line so a trailing -- comment cannot
        swallow the closing parenthesis.
        """
        return f"SELECT * FROM (\n{sql}\n) AS sentinel_limited LIMIT {int(max_rows)}"

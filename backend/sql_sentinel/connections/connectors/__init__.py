"""
Connectors Package - Database connector implementations
"""
from typing import Dict, Iterable, List, Optional

from sql_sentinel.config import settings
from sql_sentinel.core.exceptions import DriverUnavailableError
from sql_sentinel.models.connection import ConnectionType
from sql_sentinel.connections.connectors.base_connector import (
    BaseConnector,
    ColumnInfo,
    ConnectionSettings,
    QueryResult,
    TableSchema
)
from sql_sentinel.connections.connectors.postgres_connector import PostgreSQLConnector
from sql_sentinel.connections.connectors.mysql_connector import MySQLConnector
from sql_sentinel.connections.connectors.oracle_connector import OracleConnector
from sql_sentinel.connections.connectors.sqlite_connector import SQLiteConnector

CONNECTOR_CLASSES = (PostgreSQLConnector, MySQLConnector, OracleConnector, SQLiteConnector)


class ConnectorRegistry:
    """Maps each engine type to the connector that implements it."""

    def __init__(self, connectors: Iterable[BaseConnector] = ()):
        self._connectors: Dict[ConnectionType, BaseConnector] = {}
        for connector in connectors:
            self.register(connector)

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.engine_type] = connector

    def get(self, engine: ConnectionType) -> BaseConnector:
        """
        Connector for an engine type.

        Raises:
            DriverUnavailableError: If no connector is registered for it
        """
        try:
            connector = self._connectors.get(ConnectionType.parse(engine))
        except ValueError:
            connector = None
        if connector is None:
            raise DriverUnavailableError(str(getattr(engine, "value", engine)), "no connector registered")
        return connector

    def engines(self) -> List[ConnectionType]:
        return list(self._connectors)

    def available_engines(self) -> List[ConnectionType]:
        """Engines whose driver package is importable."""
        return [engine for engine, connector in self._connectors.items() if connector.is_available()]


def build_default_registry(
    pool_min_size: Optional[int] = None,
    pool_max_size: Optional[int] = None,
    pool_timeout: Optional[int] = None,
    connect_timeout: Optional[int] = None
) -> ConnectorRegistry:
    """Registry of all built-in connectors sized from settings."""
    options = dict(
        pool_min_size=pool_min_size if pool_min_size is not None else settings.POOL_MIN_SIZE,
        pool_max_size=pool_max_size if pool_max_size is not None else settings.POOL_MAX_SIZE,
        pool_timeout=pool_timeout if pool_timeout is not None else settings.POOL_ACQUIRE_TIMEOUT_SECONDS,
        connect_timeout=connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT_SECONDS
    )
    return ConnectorRegistry(connector_class(**options) for connector_class in CONNECTOR_CLASSES)


__all__ = [
    "BaseConnector",
    "ColumnInfo",
    "ConnectionSettings",
    "QueryResult",
    "TableSchema",
    "PostgreSQLConnector",
    "MySQLConnector",
    "OracleConnector",
    "SQLiteConnector",
    "ConnectorRegistry",
    "build_default_registry",
]

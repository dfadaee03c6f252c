"""
Connection Manager - Owns one lazily built connection pool per target database
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional
import threading
import time

from sqlalchemy.orm import sessionmaker
import structlog

from sql_sentinel.core.crypto import CredentialCipher, get_cipher
from sql_sentinel.core.exceptions import (
    ConnectionInactiveError,
    ConnectionNotFoundError,
    DriverUnavailableError,
    SentinelError
)
from sql_sentinel.database import get_app_db_context
from sql_sentinel.models.connection import ConnectionType, DbConnection
from sql_sentinel.connections.connectors import (
    BaseConnector,
    ConnectionSettings,
    ConnectorRegistry,
    build_default_registry
)

logger = structlog.get_logger()

# Returns the stored config for an id, or None when it does not exist
ConfigLoader = Callable[[int], Optional[Any]]


def load_connection_config(connection_id: int, session_factory: Optional[sessionmaker] = None) -> Optional[DbConnection]:
    """Read a connection config from the metadata database, detached from its session."""
    with get_app_db_context(session_factory) as db:
        config = db.query(DbConnection).filter(DbConnection.id == connection_id).first()
        if config is not None:
            db.expunge(config)
        return config


def db_config_loader(session_factory: Optional[sessionmaker] = None) -> ConfigLoader:
    """Config loader bound to a session factory."""
    def loader(connection_id: int) -> Optional[DbConnection]:
        return load_connection_config(connection_id, session_factory)
    return loader


@dataclass
class PoolEntry:
    """A live pool and the connector that built it."""
    connection_id: int
    engine_type: ConnectionType
    connector: BaseConnector
    pool: Any
    target: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class IdLock:
    """Construction lock for one connection id and the callers holding or awaiting it."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


@dataclass
class ConnectionTestResult:
    """Outcome of a one-off connectivity check."""
    success: bool
    message: str
    latency_ms: int = 0


class PoolLease:
    """
    A borrowed connection. release() returns it to its pool exactly once.
    """

    def __init__(self, connection_id: int, engine_type: ConnectionType, connector: BaseConnector, connection: Any):
        self.connection_id = connection_id
        self.engine_type = engine_type
        self.connector = connector
        self.connection = connection
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._lock:
            if self._released:
                logger.warning("connection_release_repeated", connection_id=self.connection_id)
                return
            self._released = True
        self.connector.release_connection(self.connection)

    def __enter__(self) -> "PoolLease":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class ConnectionManager:
    """
    Registry of live pools keyed by connection id.

    Pools are built on first use. A short registry lock guards the dict and
    a per-id lock guards construction and invalidation, so concurrent first
    use of one id builds a single pool while other ids proceed in parallel.
    """

    def __init__(
        self,
        config_loader: Optional[ConfigLoader] = None,
        cipher: Optional[CredentialCipher] = None,
        registry: Optional[ConnectorRegistry] = None
    ):
        self._config_loader = config_loader or load_connection_config
        self._cipher = cipher
        self.registry = registry or build_default_registry()
        self._pools: Dict[int, PoolEntry] = {}
        self._registry_lock = threading.Lock()
        self._id_locks: Dict[int, IdLock] = {}

    @property
    def cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = get_cipher()
        return self._cipher

    # ------------------------------------------------------------------
    # Pool registry
    # ------------------------------------------------------------------

    @contextmanager
    def _id_lock(self, connection_id: int) -> Iterator[None]:
        """Hold the per-id lock. It is dropped once no caller is waiting on it."""
        with self._registry_lock:
            id_lock = self._id_locks.get(connection_id)
            if id_lock is None:
                id_lock = self._id_locks[connection_id] = IdLock()
            id_lock.users += 1
        try:
            with id_lock.lock:
                yield
        finally:
            with self._registry_lock:
                id_lock.users -= 1
                if id_lock.users == 0:
                    del self._id_locks[connection_id]

    def _lookup(self, connection_id: int) -> Optional[PoolEntry]:
        with self._registry_lock:
            return self._pools.get(connection_id)

    def get_pool(self, connection_id: int) -> PoolEntry:
        """
        Return the pool for a connection id, building it on first use.

        Raises:
            ConnectionNotFoundError: If no config exists
            ConnectionInactiveError: If the config is switched off
            DriverUnavailableError: If the engine's driver is missing
            PoolConstructionError: If the credential or the host is bad
        """
        entry = self._lookup(connection_id)
        if entry is not None:
            return entry

        with self._id_lock(connection_id):
            entry = self._lookup(connection_id)
            if entry is not None:
                return entry

            entry = self._build_pool(connection_id)
            with self._registry_lock:
                self._pools[connection_id] = entry

        logger.info(
            "pool_created",
            connection_id=connection_id,
            engine=entry.engine_type.value,
            target=entry.target
        )
        return entry

    def _build_pool(self, connection_id: int) -> PoolEntry:
        config = self._config_loader(connection_id)
        if config is None:
            raise ConnectionNotFoundError(connection_id)
        if not config.is_active:
            raise ConnectionInactiveError(connection_id, config.name)

        settings = self._connection_settings(config)
        connector = self.registry.get(settings.engine)

        try:
            pool = connector.create_pool(settings)
        except SentinelError as e:
            logger.error("pool_creation_failed", connection_id=connection_id, error=str(e))
            raise

        return PoolEntry(
            connection_id=connection_id,
            engine_type=settings.engine,
            connector=connector,
            pool=pool,
            target=settings.describe()
        )

    def _connection_settings(self, config: Any, password: Optional[str] = None) -> ConnectionSettings:
        try:
            engine = ConnectionType.parse(config.db_type)
        except ValueError:
            raise DriverUnavailableError(str(config.db_type), "unsupported database type")

        if password is None and config.password_encrypted:
            password = self.cipher.decrypt(config.password_encrypted)

        return ConnectionSettings(
            connection_id=getattr(config, "id", None),
            engine=engine,
            database_name=config.database_name,
            host=config.host,
            port=config.port,
            username=config.username,
            password=password
        )

    # ------------------------------------------------------------------
    # Borrowing
    # ------------------------------------------------------------------

    def acquire(self, connection_id: int) -> PoolLease:
        """
        Borrow a connection. The caller must release() the lease.

        Raises:
            PoolExhaustedError: If no connection frees up in time
        """
        entry = self.get_pool(connection_id)
        connection = entry.connector.acquire_connection(entry.pool)
        return PoolLease(connection_id, entry.engine_type, entry.connector, connection)

    @contextmanager
    def connection(self, connection_id: int) -> Iterator[PoolLease]:
        """Borrow a connection for the duration of a with block."""
        lease = self.acquire(connection_id)
        try:
            yield lease
        finally:
            lease.release()

    def engine_for(self, connection_id: int) -> ConnectionType:
        """Engine type of a live pool, or of the stored config when none is built yet."""
        entry = self._lookup(connection_id)
        if entry is not None:
            return entry.engine_type
        config = self._config_loader(connection_id)
        if config is None:
            raise ConnectionNotFoundError(connection_id)
        try:
            return ConnectionType.parse(config.db_type)
        except ValueError:
            raise DriverUnavailableError(str(config.db_type), "unsupported database type")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def invalidate(self, connection_id: int) -> bool:
        """
        Drop and dispose the pool for a connection id.

        The next acquire rebuilds it from the current config. Unknown ids
        are ignored.
        """
        with self._id_lock(connection_id):
            with self._registry_lock:
                entry = self._pools.pop(connection_id, None)
            if entry is None:
                return False
            entry.connector.close_pool(entry.pool)

        logger.info("pool_invalidated", connection_id=connection_id)
        return True

    def shutdown_all(self) -> int:
        """Dispose every pool. Returns the number closed."""
        with self._registry_lock:
            entries = list(self._pools.values())
            self._pools.clear()

        for entry in entries:
            try:
                entry.connector.close_pool(entry.pool)
            except Exception as e:
                logger.error("pool_close_failed", connection_id=entry.connection_id, error=str(e))

        logger.info("pools_shutdown", count=len(entries))
        return len(entries)

    def active_pools(self) -> Dict[int, ConnectionType]:
        """Connection ids with a live pool, mapped to their engine."""
        with self._registry_lock:
            return {connection_id: entry.engine_type for connection_id, entry in self._pools.items()}

    def pool_details(self) -> Dict[int, Dict[str, Any]]:
        with self._registry_lock:
            return {
                connection_id: {
                    "engine": entry.engine_type.value,
                    "target": entry.target,
                    "created_at": entry.created_at.isoformat()
                }
                for connection_id, entry in self._pools.items()
            }

    def test_connection(self, config: Any, password: Optional[str] = None) -> ConnectionTestResult:
        """
        Check that a config can connect, without registering a pool.

        Args:
            config: DbConnection or any object with the same attributes
            password: Plain password; decrypted from config when omitted
        """
        start_time = time.time()
        try:
            settings = self._connection_settings(config, password)
            connector = self.registry.get(settings.engine)
            probe = type(connector)(
                pool_min_size=1,
                pool_max_size=1,
                pool_timeout=connector.pool_timeout,
                connect_timeout=connector.connect_timeout
            )
            pool = probe.create_pool(settings)
            probe.close_pool(pool)
        except SentinelError as e:
            logger.warning("connection_test_failed", error=str(e))
            return ConnectionTestResult(success=False, message=str(e))

        latency_ms = int((time.time() - start_time) * 1000)
        return ConnectionTestResult(
            success=True,
            message=f"Connected to {settings.describe()}",
            latency_ms=latency_ms
        )

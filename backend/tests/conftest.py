# Test Configuration
import os
import sqlite3
import sys
import threading
import time
from pathlib import Path

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep the metadata database and key file out of the working tree
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-secret")

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sql_sentinel.core.audit import AuditEmitter
from sql_sentinel.core.crypto import CredentialCipher
from sql_sentinel.core.rbac import PolicyStore, initialize_rbac
from sql_sentinel.core.exceptions import PoolConstructionError
from sql_sentinel.database import init_app_db
from sql_sentinel.models import ConnectionType, DbConnection
from sql_sentinel.connections.connection_manager import ConnectionManager, db_config_loader
from sql_sentinel.connections.connectors import BaseConnector, ConnectorRegistry, build_default_registry
from sql_sentinel.services.sentinel_service import SentinelService


class FakePool:
    """Stand-in for a SQLAlchemy engine."""

    def __init__(self, settings):
        self.settings = settings
        self.disposed = False


class FakeConnector(BaseConnector):
    """
    Connector that never touches a network.

    Records every pool it builds so tests can count constructions.
    """

    engine_type = ConnectionType.POSTGRESQL
    drivername = "postgresql+fake"
    driver_module = "sqlite3"

    def __init__(self, build_delay=0.0, fail_times=0, **kwargs):
        super().__init__(**kwargs)
        self.build_delay = build_delay
        self.fail_times = fail_times
        self.created = []
        self.acquired = 0
        self.released = 0
        self.closed = []
        self._lock = threading.Lock()

    def create_pool(self, settings):
        time.sleep(self.build_delay)
        with self._lock:
            if self.fail_times > 0:
                self.fail_times -= 1
                raise PoolConstructionError(f"Failed to connect to {settings.describe()}")
            pool = FakePool(settings)
            self.created.append(pool)
        return pool

    def acquire_connection(self, pool):
        with self._lock:
            self.acquired += 1
        return object()

    def release_connection(self, connection):
        with self._lock:
            self.released += 1

    def close_pool(self, pool):
        pool.disposed = True
        self.closed.append(pool)

    def limit_rows(self, sql, max_rows):
        return self.subquery_limit(sql, max_rows)

    def introspect(self, connection):
        return []


class FakeConfigStore:
    """In-memory config loader keyed by connection id."""

    def __init__(self):
        self.configs = {}

    def add(self, connection_id, db_type="POSTGRESQL", host="db-a", password_encrypted=None, is_active=True):
        self.configs[connection_id] = DbConnection(
            id=connection_id,
            name=f"conn-{connection_id}",
            db_type=db_type,
            host=host,
            port=5432,
            database_name="sales",
            username="reader",
            password_encrypted=password_encrypted,
            is_active=is_active
        )
        return self.configs[connection_id]

    def __call__(self, connection_id):
        return self.configs.get(connection_id)


@pytest.fixture
def app_session_factory():
    """Fresh in-memory metadata database with default permissions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_app_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = factory()
    try:
        initialize_rbac(db)
    finally:
        db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def policy_store(app_session_factory):
    return PolicyStore(app_session_factory)


@pytest.fixture
def cipher():
    return CredentialCipher(Fernet.generate_key())


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def config_store():
    return FakeConfigStore()


@pytest.fixture
def fake_manager(config_store, cipher, fake_connector):
    """Connection manager over in-memory configs and the fake connector."""
    manager = ConnectionManager(
        config_loader=config_store,
        cipher=cipher,
        registry=ConnectorRegistry([fake_connector])
    )
    yield manager
    manager.shutdown_all()


@pytest.fixture
def target_db(tmp_path):
    """SQLite target database with a few business tables."""
    path = tmp_path / "target.db"
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE sales_orders (
            id INTEGER PRIMARY KEY,
            customer TEXT NOT NULL,
            amount NUMERIC,
            created_at TEXT
        );
        CREATE TABLE inventory (
            sku TEXT PRIMARY KEY,
            quantity INTEGER
        );
        CREATE TABLE financial_reports (
            id INTEGER PRIMARY KEY,
            total REAL
        );
        CREATE VIEW big_orders AS SELECT id, amount FROM sales_orders WHERE amount > 100;
    """)
    conn.executemany(
        "INSERT INTO sales_orders (id, customer, amount, created_at) VALUES (?, ?, ?, ?)",
        [(i, f"customer-{i}", i * 10, f"2024-01-{(i % 28) + 1:02d}") for i in range(1, 51)]
    )
    conn.executemany("INSERT INTO inventory VALUES (?, ?)", [("A-1", 5), ("B-2", 0)])
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def add_connection(app_session_factory, cipher):
    """Insert a connection config into the metadata database."""
    def _add(name, db_type="SQLITE", database_name="", host=None, port=None,
             username=None, password=None, is_active=True):
        db = app_session_factory()
        try:
            connection = DbConnection(
                name=name,
                db_type=db_type,
                host=host,
                port=port,
                database_name=str(database_name),
                username=username,
                password_encrypted=cipher.encrypt(password) if password else None,
                is_active=is_active
            )
            db.add(connection)
            db.commit()
            return connection.id
        finally:
            db.close()
    return _add


@pytest.fixture
def sqlite_manager(app_session_factory, cipher):
    """Connection manager over the metadata database and the built-in connectors."""
    manager = ConnectionManager(
        config_loader=db_config_loader(app_session_factory),
        cipher=cipher,
        registry=build_default_registry(pool_min_size=1, pool_max_size=3, pool_timeout=2, connect_timeout=2)
    )
    yield manager
    manager.shutdown_all()


@pytest.fixture
def audit_records():
    return []


@pytest.fixture
def service(app_session_factory, policy_store, sqlite_manager, audit_records):
    return SentinelService(
        policy_store=policy_store,
        connection_manager=sqlite_manager,
        audit=AuditEmitter([audit_records.append]),
        session_factory=app_session_factory
    )

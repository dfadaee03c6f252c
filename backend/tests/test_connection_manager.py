"""
Tests for the connection pool manager
"""
import threading

import pytest

from sql_sentinel.core.exceptions import (
    ConnectionInactiveError,
    ConnectionNotFoundError,
    CredentialDecryptionError,
    DriverUnavailableError,
    PoolConstructionError
)
from sql_sentinel.models import ConnectionType
from sql_sentinel.connections.connection_manager import ConnectionManager
from sql_sentinel.connections.connectors import (
    ConnectionSettings,
    ConnectorRegistry,
    MySQLConnector,
    OracleConnector,
    SQLiteConnector
)

from conftest import FakeConnector, FakeConfigStore


class MissingDriverMySQLConnector(MySQLConnector):
    driver_module = "sentinel_missing_driver_for_tests"


class TestPoolConstruction:
    """Lazy, single construction per connection id"""

    def test_pool_built_on_first_acquire(self, fake_manager, config_store, fake_connector):
        config_store.add(1)
        assert fake_manager.active_pools() == {}

        lease = fake_manager.acquire(1)
        lease.release()

        assert len(fake_connector.created) == 1
        assert fake_manager.active_pools() == {1: ConnectionType.POSTGRESQL}

    def test_pool_reused(self, fake_manager, config_store, fake_connector):
        config_store.add(1)
        for _ in range(3):
            with fake_manager.connection(1):
                pass
        assert len(fake_connector.created) == 1
        assert fake_connector.acquired == 3
        assert fake_connector.released == 3

    def test_concurrent_first_use_builds_one_pool(self, config_store, cipher):
        connector = FakeConnector(build_delay=0.05)
        manager = ConnectionManager(config_store, cipher, ConnectorRegistry([connector]))
        config_store.add(1)

        workers = 16
        barrier = threading.Barrier(workers)
        errors = []

        def worker():
            barrier.wait()
            try:
                with manager.connection(1):
                    pass
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert len(connector.created) == 1
        assert connector.released == workers

    def test_different_ids_get_separate_pools(self, fake_manager, config_store, fake_connector):
        config_store.add(1, host="db-a")
        config_store.add(2, host="db-b")
        fake_manager.acquire(1).release()
        fake_manager.acquire(2).release()
        assert sorted(pool.settings.host for pool in fake_connector.created) == ["db-a", "db-b"]

    def test_password_decrypted_for_pool(self, fake_manager, config_store, fake_connector, cipher):
        config_store.add(1, password_encrypted=cipher.encrypt("hunter2"))
        fake_manager.acquire(1).release()
        assert fake_connector.created[0].settings.password == "hunter2"


class TestPoolFailures:
    """Nothing is registered when construction fails"""

    def test_missing_config(self, fake_manager):
        with pytest.raises(ConnectionNotFoundError):
            fake_manager.acquire(42)

    def test_inactive_config(self, fake_manager, config_store):
        config_store.add(1, is_active=False)
        with pytest.raises(ConnectionInactiveError):
            fake_manager.acquire(1)
        assert fake_manager.active_pools() == {}

    def test_bad_credential(self, fake_manager, config_store):
        config_store.add(1, password_encrypted="corrupted")
        with pytest.raises(CredentialDecryptionError):
            fake_manager.acquire(1)
        assert fake_manager.active_pools() == {}

    def test_construction_failure_not_cached(self, config_store, cipher):
        connector = FakeConnector(fail_times=1)
        manager = ConnectionManager(config_store, cipher, ConnectorRegistry([connector]))
        config_store.add(1)

        with pytest.raises(PoolConstructionError):
            manager.acquire(1)
        assert manager.active_pools() == {}

        manager.acquire(1).release()
        assert len(connector.created) == 1

    def test_unregistered_engine(self, fake_manager, config_store):
        config_store.add(1, db_type="ORACLE")
        with pytest.raises(DriverUnavailableError):
            fake_manager.acquire(1)

    def test_unsupported_engine_string(self, fake_manager, config_store):
        config_store.add(1, db_type="MONGODB")
        with pytest.raises(DriverUnavailableError):
            fake_manager.acquire(1)

    def test_missing_driver_isolated_to_engine(self, cipher, tmp_path):
        configs = FakeConfigStore()
        configs.add(1, db_type="MYSQL")
        sqlite_config = configs.add(2, db_type="SQLITE")
        sqlite_config.database_name = str(tmp_path / "local.db")

        manager = ConnectionManager(
            configs,
            cipher,
            ConnectorRegistry([MissingDriverMySQLConnector(), SQLiteConnector()])
        )
        try:
            with pytest.raises(DriverUnavailableError) as exc_info:
                manager.acquire(1)
            assert "MYSQL" in str(exc_info.value)

            with manager.connection(2) as lease:
                assert lease.engine_type == ConnectionType.SQLITE
            assert manager.active_pools() == {2: ConnectionType.SQLITE}
        finally:
            manager.shutdown_all()


class TestInvalidation:

    def test_invalidate_then_acquire_rebuilds_with_new_config(self, fake_manager, config_store, fake_connector):
        config = config_store.add(1, host="db-a")
        fake_manager.acquire(1).release()

        config.host = "db-b"
        assert fake_manager.invalidate(1)
        assert fake_connector.created[0].disposed
        assert fake_manager.active_pools() == {}

        fake_manager.acquire(1).release()
        assert [pool.settings.host for pool in fake_connector.created] == ["db-a", "db-b"]

    def test_invalidate_unknown_id_is_noop(self, fake_manager):
        assert fake_manager.invalidate(404) is False

    def test_shutdown_all_closes_every_pool(self, fake_manager, config_store, fake_connector):
        config_store.add(1)
        config_store.add(2)
        fake_manager.acquire(1).release()
        fake_manager.acquire(2).release()

        assert fake_manager.shutdown_all() == 2
        assert all(pool.disposed for pool in fake_connector.created)
        assert fake_manager.active_pools() == {}


class TestIdLocks:
    """Per-id construction locks do not outlive their callers"""

    def test_released_after_build(self, fake_manager, config_store):
        config_store.add(1)
        fake_manager.acquire(1).release()
        assert fake_manager._id_locks == {}

    def test_released_after_failed_lookup(self, fake_manager):
        for connection_id in range(5):
            with pytest.raises(ConnectionNotFoundError):
                fake_manager.acquire(connection_id)
        assert fake_manager._id_locks == {}

    def test_released_after_invalidate(self, fake_manager, config_store):
        config_store.add(1)
        fake_manager.acquire(1).release()
        fake_manager.invalidate(1)
        fake_manager.invalidate(2)
        assert fake_manager._id_locks == {}

    def test_released_after_concurrent_build(self, config_store, cipher):
        connector = FakeConnector(build_delay=0.05)
        manager = ConnectionManager(config_store, cipher, ConnectorRegistry([connector]))
        config_store.add(1)
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            manager.acquire(1).release()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(connector.created) == 1
        assert manager._id_locks == {}


class TestLease:

    def test_release_is_exactly_once(self, fake_manager, config_store, fake_connector):
        config_store.add(1)
        lease = fake_manager.acquire(1)
        lease.release()
        lease.release()
        assert lease.released
        assert fake_connector.released == 1

    def test_context_manager_releases_on_error(self, fake_manager, config_store, fake_connector):
        config_store.add(1)
        with pytest.raises(RuntimeError):
            with fake_manager.connection(1):
                raise RuntimeError("boom")
        assert fake_connector.released == 1


class TestConnectionTest:

    def test_probe_does_not_register_pool(self, fake_manager, config_store):
        config = config_store.add(9)
        result = fake_manager.test_connection(config, password="pw")
        assert result.success
        assert fake_manager.active_pools() == {}

    def test_probe_reports_failure(self, fake_manager, config_store):
        config = config_store.add(9, db_type="ORACLE")
        result = fake_manager.test_connection(config)
        assert not result.success
        assert "ORACLE" in result.message


class TestConnectors:
    """Engine-specific connector details"""

    def test_oracle_url_uses_service_name(self):
        url = OracleConnector().build_url(ConnectionSettings(
            connection_id=1,
            engine=ConnectionType.ORACLE,
            database_name="ORCLPDB1",
            host="ora.internal",
            port=None,
            username="scott",
            password="tiger"
        ))
        assert url.drivername == "oracle+oracledb"
        assert url.port == 1521
        assert url.query["service_name"] == "ORCLPDB1"

    def test_oracle_probe_uses_dual(self):
        assert OracleConnector.probe_sql == "SELECT 1 FROM DUAL"

    def test_registry_lookup_by_string(self):
        registry = ConnectorRegistry([SQLiteConnector()])
        assert isinstance(registry.get("sqlite"), SQLiteConnector)
        with pytest.raises(DriverUnavailableError):
            registry.get(ConnectionType.MYSQL)

    def test_sqlite_driver_always_available(self):
        assert SQLiteConnector().is_available()
        assert not MissingDriverMySQLConnector().is_available()

"""
Tests for the request flow and connection administration
"""
import pytest

from sql_sentinel.core.audit import QueryStatus
from sql_sentinel.core.exceptions import (
    AccessDenied,
    ConnectionConfigError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    ExecutionError,
    PolicyViolation
)
from sql_sentinel.models import ConnectionType, Role
from sql_sentinel.services.sentinel_service import NO_DB_ACCESS, Principal

ANALYST = Principal(user_id=7, role=Role.ANALYST)
OUTSIDER = Principal(user_id=8, role=Role.ANALYST)
ADMIN = Principal(user_id=1, role=Role.ADMIN)


@pytest.fixture
def sales_id(service, target_db):
    created = service.create_connection(
        creator_id=ADMIN.user_id,
        name="sales",
        db_type="sqlite",
        database_name=str(target_db)
    )
    service.grant_access(ANALYST.user_id, created["id"])
    return created["id"]


class TestExecuteRequest:
    """Every attempt emits exactly one audit record"""

    def test_success(self, service, sales_id, audit_records):
        outcome = service.execute_request(ANALYST, sales_id, "SELECT customer FROM sales_orders WHERE id = 3")

        assert outcome.success
        assert outcome.result.rows == [{"customer": "customer-3"}]
        assert "LIMIT 1000" in outcome.sanitized_sql
        assert len(audit_records) == 1
        record = audit_records[0]
        assert record.status == QueryStatus.SUCCESS
        assert record.user_id == ANALYST.user_id
        assert record.connection_id == sales_id
        assert record.rows_affected == 1
        assert record.error_message is None

    def test_blocked_without_grant(self, service, sales_id, audit_records):
        outcome = service.execute_request(OUTSIDER, sales_id, "SELECT * FROM sales_orders")

        assert outcome.status == QueryStatus.BLOCKED
        assert outcome.error == NO_DB_ACCESS
        assert isinstance(outcome.exception, AccessDenied)
        assert [record.status for record in audit_records] == [QueryStatus.BLOCKED]
        assert service.connection_manager.active_pools() == {}

    def test_blocked_by_policy(self, service, sales_id, audit_records):
        outcome = service.execute_request(
            ANALYST, sales_id, "SELECT * FROM sales_orders s JOIN inventory i ON s.id = i.quantity"
        )

        assert outcome.status == QueryStatus.BLOCKED
        assert outcome.error == "You do not have permission to use JOIN operations"
        assert isinstance(outcome.exception, PolicyViolation)
        assert len(audit_records) == 1
        assert audit_records[0].error_message == outcome.error

    def test_blocked_by_forbidden_keyword(self, service, sales_id, audit_records):
        outcome = service.execute_request(ANALYST, sales_id, "DROP TABLE sales_orders")

        assert outcome.status == QueryStatus.BLOCKED
        assert outcome.error == "Security Violation: Forbidden keyword 'DROP' detected."
        assert len(audit_records) == 1

    def test_blocked_by_table_allow_list(self, service, sales_id, audit_records):
        outcome = service.execute_request(
            ANALYST, sales_id, "SELECT * FROM financial_reports", table_allow_list=["sales_orders"]
        )

        assert outcome.status == QueryStatus.BLOCKED
        assert "financial_reports" in outcome.error
        assert len(audit_records) == 1

    def test_failed_execution(self, service, sales_id, audit_records):
        outcome = service.execute_request(ANALYST, sales_id, "SELECT * FROM missing_table")

        assert outcome.status == QueryStatus.FAILED
        assert isinstance(outcome.exception, ExecutionError)
        assert outcome.sanitized_sql is not None
        assert len(audit_records) == 1
        assert "no such table" in audit_records[0].error_message

    def test_failed_unknown_connection(self, service, audit_records):
        outcome = service.execute_request(ADMIN, 404, "SELECT 1")

        assert outcome.status == QueryStatus.FAILED
        assert isinstance(outcome.exception, ConnectionNotFoundError)
        assert len(audit_records) == 1

    def test_select_with_trailing_comment(self, service, sales_id, audit_records):
        outcome = service.execute_request(ADMIN, sales_id, "SELECT id FROM sales_orders -- all orders")

        assert outcome.success
        assert outcome.result.row_count == 50
        assert audit_records[0].status == QueryStatus.SUCCESS

    def test_admin_dml_reports_rows_affected(self, service, sales_id, audit_records):
        outcome = service.execute_request(ADMIN, sales_id, "UPDATE inventory SET quantity = quantity + 1")

        assert outcome.success
        assert outcome.result.rows_affected == 2
        assert audit_records[0].rows_affected == 2


class TestReads:

    def test_schema_requires_grant(self, service, sales_id):
        with pytest.raises(AccessDenied):
            service.schema_for(OUTSIDER, sales_id)
        tables = service.schema_for(ANALYST, sales_id)
        assert "sales_orders" in [table.table_name for table in tables]

    def test_accessible_databases(self, service, sales_id):
        assert [db["name"] for db in service.accessible_databases(ANALYST)] == ["sales"]
        assert service.accessible_databases(OUTSIDER) == []
        assert [db["name"] for db in service.accessible_databases(ADMIN)] == ["sales"]

    def test_validate_uses_connection_engine(self, service, sales_id):
        result = service.validate_and_prepare("SELECT * FROM inventory", Role.ANALYST, connection_id=sales_id)
        assert result.valid
        assert result.sanitized_sql == "SELECT * FROM (\nSELECT * FROM inventory\n) AS sentinel_limited LIMIT 1000"

    def test_permissions_for_role(self, service):
        summary = service.permissions_for(Role.DEVELOPER)
        assert summary.max_rows == 10000


class TestConnectionAdministration:

    def test_creator_is_granted(self, service, target_db):
        created = service.create_connection(
            creator_id=42, name="ledger", db_type="SQLITE", database_name=str(target_db)
        )
        assert created["db_type"] == ConnectionType.SQLITE.value
        assert "password_encrypted" not in created
        assert service.policy_store.has_db_access(42, Role.ANALYST, created["id"])

    def test_password_stored_encrypted(self, service, app_session_factory):
        from sql_sentinel.models import DbConnection

        created = service.create_connection(
            creator_id=1, name="warehouse", db_type="POSTGRESQL", database_name="dw",
            host="dw.internal", port=5432, username="reader", password="s3cret"
        )
        db = app_session_factory()
        try:
            stored = db.query(DbConnection).filter(DbConnection.id == created["id"]).one()
            assert stored.password_encrypted != "s3cret"
            assert service.connection_manager.cipher.decrypt(stored.password_encrypted) == "s3cret"
        finally:
            db.close()

    def test_duplicate_name(self, service, sales_id, target_db):
        with pytest.raises(DuplicateConnectionError):
            service.create_connection(creator_id=1, name="sales", db_type="SQLITE", database_name=str(target_db))

    def test_invalid_type(self, service):
        with pytest.raises(ConnectionConfigError) as exc_info:
            service.create_connection(creator_id=1, name="docs", db_type="MONGODB", database_name="docs")
        assert "Invalid database type" in str(exc_info.value)

    def test_host_required_for_server_engines(self, service):
        with pytest.raises(ConnectionConfigError):
            service.create_connection(creator_id=1, name="pg", db_type="POSTGRESQL", database_name="app")

    def test_identity_change_invalidates_pool(self, service, sales_id, tmp_path):
        service.execute_request(ANALYST, sales_id, "SELECT 1")
        assert sales_id in service.connection_manager.active_pools()

        service.update_connection(sales_id, database_name=str(tmp_path / "other.db"))
        assert service.connection_manager.active_pools() == {}

    def test_rename_keeps_pool(self, service, sales_id):
        service.execute_request(ANALYST, sales_id, "SELECT 1")

        updated = service.update_connection(sales_id, name="sales-eu", host=None)
        assert updated["name"] == "sales-eu"
        assert sales_id in service.connection_manager.active_pools()

    def test_rename_to_taken_name(self, service, sales_id, target_db):
        service.create_connection(creator_id=1, name="ledger", db_type="SQLITE", database_name=str(target_db))
        with pytest.raises(DuplicateConnectionError):
            service.update_connection(sales_id, name="ledger")

    def test_update_missing(self, service):
        with pytest.raises(ConnectionNotFoundError):
            service.update_connection(404, name="nope")

    def test_delete_removes_grants_and_pool(self, service, sales_id):
        service.execute_request(ANALYST, sales_id, "SELECT 1")

        service.delete_connection(sales_id)

        assert service.connection_manager.active_pools() == {}
        assert not service.policy_store.has_db_access(ANALYST.user_id, ANALYST.role, sales_id)
        assert service.list_connections() == []

    def test_delete_missing(self, service):
        with pytest.raises(ConnectionNotFoundError):
            service.delete_connection(404)

    def test_grant_requires_connection(self, service):
        with pytest.raises(ConnectionNotFoundError):
            service.grant_access(7, 404)

    def test_revoke(self, service, sales_id):
        service.revoke_access(ANALYST.user_id, sales_id)
        outcome = service.execute_request(ANALYST, sales_id, "SELECT 1")
        assert outcome.status == QueryStatus.BLOCKED


class TestConnectionProbe:

    def test_stored_connection(self, service, sales_id):
        result = service.test_connection(connection_id=sales_id)
        assert result.success
        assert service.connection_manager.active_pools() == {}

    def test_unreachable(self, service, tmp_path):
        created = service.create_connection(
            creator_id=1, name="gone", db_type="SQLITE",
            database_name=str(tmp_path / "missing-dir" / "gone.db")
        )
        result = service.test_connection(connection_id=created["id"])
        assert not result.success
        assert "Failed to connect" in result.message

    def test_missing(self, service):
        with pytest.raises(ConnectionNotFoundError):
            service.test_connection(connection_id=404)

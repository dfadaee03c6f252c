"""
Sentinel Service - request flow from SQL text to audited result

Wires the policy store, gatekeeper, connection manager, executor and
introspector together. The HTTP layer talks only to this class.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker
import structlog

from sql_sentinel.config import settings
from sql_sentinel.core.audit import AuditEmitter, QueryAuditRecord, QueryStatus
from sql_sentinel.core.deadline import Deadline
from sql_sentinel.core.exceptions import (
    AccessDenied,
    ConnectionConfigError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    PolicyViolation,
    SentinelError
)
from sql_sentinel.core.crypto import CredentialCipher
from sql_sentinel.core.rbac import OperationPermission, PolicyStore, RolePermissionSummary
from sql_sentinel.database import get_app_db_context
from sql_sentinel.models import (
    ConnectionType,
    DbConnection,
    Operation,
    POOL_IDENTITY_FIELDS,
    Role,
    UserDbGrant
)
from sql_sentinel.connections.connection_manager import (
    ConnectionManager,
    ConnectionTestResult,
    db_config_loader
)
from sql_sentinel.connections.connectors import QueryResult, TableSchema
from sql_sentinel.security.gatekeeper import Gatekeeper, ValidationResult
from sql_sentinel.services.query_executor import QueryExecutor
from sql_sentinel.services.schema_introspector import SchemaIntrospector

logger = structlog.get_logger()

NO_DB_ACCESS = "You do not have access to this database"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as supplied by the upstream auth layer."""
    user_id: int
    role: Role


@dataclass
class ExecutionOutcome:
    """Result of one audited execution attempt."""
    status: QueryStatus
    sql: str
    sanitized_sql: Optional[str] = None
    result: Optional[QueryResult] = None
    error: Optional[str] = None
    exception: Optional[SentinelError] = field(default=None, repr=False)
    audit: Optional[QueryAuditRecord] = None

    @property
    def success(self) -> bool:
        return self.status == QueryStatus.SUCCESS


class SentinelService:
    """Internal call boundary for validation, execution and administration."""

    def __init__(
        self,
        policy_store: PolicyStore,
        connection_manager: ConnectionManager,
        gatekeeper: Optional[Gatekeeper] = None,
        executor: Optional[QueryExecutor] = None,
        introspector: Optional[SchemaIntrospector] = None,
        audit: Optional[AuditEmitter] = None,
        session_factory: Optional[sessionmaker] = None
    ):
        self.policy_store = policy_store
        self.connection_manager = connection_manager
        self.gatekeeper = gatekeeper or Gatekeeper(policy_store, connection_manager.registry)
        self.executor = executor or QueryExecutor(
            connection_manager, default_timeout_seconds=settings.QUERY_TIMEOUT_SECONDS
        )
        self.introspector = introspector or SchemaIntrospector(connection_manager)
        self.audit = audit or AuditEmitter()
        self._session_factory = session_factory

    @classmethod
    def create(
        cls,
        session_factory: Optional[sessionmaker] = None,
        cipher: Optional[CredentialCipher] = None,
        audit: Optional[AuditEmitter] = None
    ) -> "SentinelService":
        """Service backed by the metadata database and the built-in connectors."""
        manager = ConnectionManager(config_loader=db_config_loader(session_factory), cipher=cipher)
        return cls(
            policy_store=PolicyStore(session_factory),
            connection_manager=manager,
            audit=audit,
            session_factory=session_factory
        )

    def _session(self):
        return get_app_db_context(self._session_factory)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def validate_and_prepare(
        self,
        sql: str,
        role: Role,
        table_allow_list: Optional[Iterable[str]] = None,
        engine: Optional[ConnectionType] = None,
        connection_id: Optional[int] = None,
        known_tables: Optional[Iterable[str]] = None
    ) -> ValidationResult:
        """
        Validate SQL for a role and rewrite it for the target engine.

        The engine comes from the connection config when only a
        connection id is given, and defaults to PostgreSQL.
        """
        if engine is None:
            engine = self.connection_manager.engine_for(connection_id) if connection_id else ConnectionType.POSTGRESQL
        return self.gatekeeper.validate(
            sql,
            role,
            accessible_tables=table_allow_list,
            engine=engine,
            known_tables=known_tables
        )

    def run_query(
        self,
        connection_id: int,
        sql: str,
        max_rows: Optional[int],
        deadline: Optional[Deadline] = None
    ) -> QueryResult:
        return self.executor.execute(connection_id, sql, max_rows, deadline)

    def fetch_schema(self, connection_id: int) -> List[TableSchema]:
        return self.introspector.get_schema(connection_id)

    def invalidate_pool(self, connection_id: int) -> bool:
        return self.connection_manager.invalidate(connection_id)

    def shutdown_all(self) -> int:
        return self.connection_manager.shutdown_all()

    # ------------------------------------------------------------------
    # Request flow
    # ------------------------------------------------------------------

    def execute_request(
        self,
        principal: Principal,
        connection_id: int,
        sql: str,
        table_allow_list: Optional[Iterable[str]] = None,
        deadline: Optional[Deadline] = None
    ) -> ExecutionOutcome:
        """
        Grant check, validation and execution for one request.

        Exactly one audit record is emitted, whatever the outcome.
        """
        if not self.policy_store.has_db_access(principal.user_id, principal.role, connection_id):
            return self._blocked(principal, connection_id, sql, AccessDenied(NO_DB_ACCESS))

        try:
            validation = self.validate_and_prepare(
                sql, principal.role, table_allow_list=table_allow_list, connection_id=connection_id
            )
        except SentinelError as e:
            return self._failed(principal, connection_id, sql, e)

        if not validation.valid:
            return self._blocked(principal, connection_id, sql, PolicyViolation(validation.error))

        try:
            result = self.run_query(connection_id, validation.sanitized_sql, validation.max_rows, deadline)
        except SentinelError as e:
            outcome = self._failed(principal, connection_id, sql, e)
            outcome.sanitized_sql = validation.sanitized_sql
            return outcome

        record = self.audit.emit(
            user_id=principal.user_id,
            connection_id=connection_id,
            sql_text=sql,
            status=QueryStatus.SUCCESS,
            execution_time_ms=result.execution_time_ms,
            rows_affected=result.rows_affected or result.row_count
        )
        return ExecutionOutcome(
            status=QueryStatus.SUCCESS,
            sql=sql,
            sanitized_sql=validation.sanitized_sql,
            result=result,
            audit=record
        )

    def _blocked(self, principal: Principal, connection_id: int, sql: str, error: SentinelError) -> ExecutionOutcome:
        record = self.audit.emit(
            user_id=principal.user_id,
            connection_id=connection_id,
            sql_text=sql,
            status=QueryStatus.BLOCKED,
            error_message=str(error)
        )
        return ExecutionOutcome(
            status=QueryStatus.BLOCKED,
            sql=sql,
            error=str(error),
            exception=error,
            audit=record
        )

    def _failed(self, principal: Principal, connection_id: int, sql: str, error: SentinelError) -> ExecutionOutcome:
        record = self.audit.emit(
            user_id=principal.user_id,
            connection_id=connection_id,
            sql_text=sql,
            status=QueryStatus.FAILED,
            error_message=str(error),
            execution_time_ms=getattr(error, "execution_time_ms", 0)
        )
        return ExecutionOutcome(
            status=QueryStatus.FAILED,
            sql=sql,
            error=str(error),
            exception=error,
            audit=record
        )

    def schema_for(self, principal: Principal, connection_id: int) -> List[TableSchema]:
        """Schema of a database the caller may target."""
        if not self.policy_store.has_db_access(principal.user_id, principal.role, connection_id):
            raise AccessDenied(NO_DB_ACCESS)
        return self.fetch_schema(connection_id)

    def accessible_databases(self, principal: Principal) -> List[dict]:
        return self.policy_store.accessible_connections(principal.user_id, principal.role)

    def permissions_for(self, role: Role) -> RolePermissionSummary:
        return self.policy_store.permissions_for(role)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_connections(self) -> List[dict]:
        with self._session() as db:
            return [conn.to_safe_dict() for conn in db.query(DbConnection).order_by(DbConnection.name).all()]

    def create_connection(
        self,
        creator_id: int,
        name: str,
        db_type: Any,
        database_name: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        is_active: bool = True
    ) -> dict:
        """
        Store a new target database and grant the creator access to it.

        Raises:
            ConnectionConfigError: If the engine or required fields are invalid
            DuplicateConnectionError: If the name is taken
        """
        engine = self._parse_engine(db_type)
        if not name or not database_name:
            raise ConnectionConfigError("Connection name and database name are required")
        if engine != ConnectionType.SQLITE and not host:
            raise ConnectionConfigError(f"Host is required for {engine.value} connections")

        with self._session() as db:
            if db.query(DbConnection).filter(DbConnection.name == name).first():
                raise DuplicateConnectionError(f"Connection name already exists: {name}")

            connection = DbConnection(
                name=name,
                db_type=engine.value,
                host=host,
                port=port,
                database_name=database_name,
                username=username,
                password_encrypted=self.connection_manager.cipher.encrypt(password) if password else None,
                is_active=is_active,
                created_by=creator_id
            )
            db.add(connection)
            db.flush()
            db.add(UserDbGrant(user_id=creator_id, db_connection_id=connection.id))
            created = connection.to_safe_dict()

        logger.info("db_connection_created", connection_id=created["id"], name=name, engine=engine.value)
        return created

    def update_connection(self, connection_id: int, **changes: Any) -> dict:
        """
        Apply changes to a connection config.

        None values are ignored. A new password is encrypted. The live pool
        is invalidated when any field that identifies the target changes.
        """
        password = changes.pop("password", None)
        if changes.get("db_type") is not None:
            changes["db_type"] = self._parse_engine(changes["db_type"]).value

        with self._session() as db:
            connection = db.query(DbConnection).filter(DbConnection.id == connection_id).first()
            if connection is None:
                raise ConnectionNotFoundError(connection_id)

            new_name = changes.get("name")
            if new_name and new_name != connection.name:
                taken = db.query(DbConnection).filter(
                    DbConnection.name == new_name,
                    DbConnection.id != connection_id
                ).first()
                if taken:
                    raise DuplicateConnectionError(f"Connection name already exists: {new_name}")

            before = {name: getattr(connection, name) for name in POOL_IDENTITY_FIELDS}

            for key, value in changes.items():
                if value is not None and hasattr(DbConnection, key) and key not in ("id", "created_by", "created_at"):
                    setattr(connection, key, value)
            if password:
                connection.password_encrypted = self.connection_manager.cipher.encrypt(password)

            identity_changed = any(getattr(connection, name) != before[name] for name in POOL_IDENTITY_FIELDS)
            updated = connection.to_safe_dict()

        if identity_changed:
            self.connection_manager.invalidate(connection_id)

        logger.info("db_connection_updated", connection_id=connection_id, pool_invalidated=identity_changed)
        return updated

    def delete_connection(self, connection_id: int) -> None:
        """Close the pool, then remove the config and its grants."""
        with self._session() as db:
            if db.query(DbConnection).filter(DbConnection.id == connection_id).first() is None:
                raise ConnectionNotFoundError(connection_id)

        self.connection_manager.invalidate(connection_id)

        with self._session() as db:
            db.query(UserDbGrant).filter(UserDbGrant.db_connection_id == connection_id).delete()
            db.query(DbConnection).filter(DbConnection.id == connection_id).delete()

        logger.info("db_connection_deleted", connection_id=connection_id)

    def test_connection(
        self,
        connection_id: Optional[int] = None,
        config: Optional[Any] = None,
        password: Optional[str] = None
    ) -> ConnectionTestResult:
        """Probe a stored config by id, or an unsaved one with a plain password."""
        if config is None:
            with self._session() as db:
                config = db.query(DbConnection).filter(DbConnection.id == connection_id).first()
                if config is None:
                    raise ConnectionNotFoundError(connection_id)
                db.expunge(config)
        return self.connection_manager.test_connection(config, password)

    def grant_access(self, user_id: int, connection_id: int) -> None:
        self._require_connection(connection_id)
        self.policy_store.grant_access(user_id, connection_id)

    def revoke_access(self, user_id: int, connection_id: int) -> None:
        self._require_connection(connection_id)
        self.policy_store.revoke_access(user_id, connection_id)

    def list_permissions(self) -> Dict[str, List[dict]]:
        return self.policy_store.list_permissions()

    def update_permission(
        self,
        role: Role,
        operation: Operation,
        is_allowed: bool,
        max_rows: Optional[int] = None
    ) -> OperationPermission:
        return self.policy_store.update_permission(role, operation, is_allowed, max_rows)

    def active_pools(self) -> Dict[int, Dict[str, Any]]:
        return self.connection_manager.pool_details()

    def _require_connection(self, connection_id: int) -> None:
        with self._session() as db:
            if db.query(DbConnection.id).filter(DbConnection.id == connection_id).first() is None:
                raise ConnectionNotFoundError(connection_id)

    @staticmethod
    def _parse_engine(db_type: Any) -> ConnectionType:
        try:
            return ConnectionType.parse(db_type)
        except ValueError as e:
            valid = ", ".join(engine.value for engine in ConnectionType)
            raise ConnectionConfigError(f"Invalid database type. Must be one of: {valid}") from e

"""
Role-Based Access Control (RBAC) Policy Store

Answers two questions for the gatekeeper: may this role run this kind of
operation (and with what row cap), and may this user target this database.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
import structlog

from sql_sentinel.core.exceptions import PermissionUpdateError
from sql_sentinel.database import get_app_db_context
from sql_sentinel.models import (
    Role,
    Operation,
    RolePermission,
    DbConnection,
    UserDbGrant,
    CONFIGURABLE_OPERATIONS
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class OperationPermission:
    """Result of a single (role, operation) lookup."""
    allowed: bool
    max_rows: int


@dataclass(frozen=True)
class RolePermissionSummary:
    """All operations a role may run, with the largest row cap among them."""
    allowed_operations: FrozenSet[Operation] = field(default_factory=frozenset)
    max_rows: int = 0


DENIED = OperationPermission(allowed=False, max_rows=0)


# Default role permissions seeded on first start
DEFAULT_ROLE_PERMISSIONS = [
    {"role": Role.ADMIN, "operation": Operation.SELECT, "is_allowed": True, "max_rows": 100000},
    {"role": Role.ADMIN, "operation": Operation.INSERT, "is_allowed": True, "max_rows": 100000},
    {"role": Role.ADMIN, "operation": Operation.UPDATE, "is_allowed": True, "max_rows": 100000},
    {"role": Role.ADMIN, "operation": Operation.DELETE, "is_allowed": True, "max_rows": 100000},
    {"role": Role.ADMIN, "operation": Operation.JOIN, "is_allowed": True, "max_rows": 100000},
    {"role": Role.ADMIN, "operation": Operation.CTE, "is_allowed": True, "max_rows": 100000},
    {"role": Role.DEVELOPER, "operation": Operation.SELECT, "is_allowed": True, "max_rows": 10000},
    {"role": Role.DEVELOPER, "operation": Operation.INSERT, "is_allowed": False, "max_rows": 0},
    {"role": Role.DEVELOPER, "operation": Operation.UPDATE, "is_allowed": False, "max_rows": 0},
    {"role": Role.DEVELOPER, "operation": Operation.DELETE, "is_allowed": False, "max_rows": 0},
    {"role": Role.DEVELOPER, "operation": Operation.JOIN, "is_allowed": True, "max_rows": 10000},
    {"role": Role.DEVELOPER, "operation": Operation.CTE, "is_allowed": True, "max_rows": 10000},
    {"role": Role.ANALYST, "operation": Operation.SELECT, "is_allowed": True, "max_rows": 1000},
    {"role": Role.ANALYST, "operation": Operation.INSERT, "is_allowed": False, "max_rows": 0},
    {"role": Role.ANALYST, "operation": Operation.UPDATE, "is_allowed": False, "max_rows": 0},
    {"role": Role.ANALYST, "operation": Operation.DELETE, "is_allowed": False, "max_rows": 0},
    {"role": Role.ANALYST, "operation": Operation.JOIN, "is_allowed": False, "max_rows": 0},
    {"role": Role.ANALYST, "operation": Operation.CTE, "is_allowed": False, "max_rows": 0},
]


class PolicyStore:
    """
    Read access to role permissions and database grants.

    Every lookup opens its own short session so a single store can be
    shared by concurrent requests.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _session(self):
        return get_app_db_context(self._session_factory)

    # ------------------------------------------------------------------
    # Operation policy
    # ------------------------------------------------------------------

    def is_allowed(self, role: Role, operation: Operation) -> OperationPermission:
        """
        Check if a role may run an operation.

        DDL is ADMIN-only and UNKNOWN is always refused, whatever is
        stored. A missing row means not allowed.
        """
        if operation == Operation.DDL:
            return OperationPermission(allowed=role == Role.ADMIN, max_rows=0)

        if operation == Operation.UNKNOWN:
            return DENIED

        with self._session() as db:
            permission = db.query(RolePermission).filter(
                RolePermission.role == role.value,
                RolePermission.operation == operation.value
            ).first()

            if not permission:
                return DENIED

            return OperationPermission(
                allowed=bool(permission.is_allowed),
                max_rows=permission.max_rows or 0
            )

    def permissions_for(self, role: Role) -> RolePermissionSummary:
        """Get all allowed operations for a role and the largest row cap."""
        with self._session() as db:
            rows = db.query(RolePermission).filter(
                RolePermission.role == role.value,
                RolePermission.is_allowed == True  # noqa: E712
            ).all()
            allowed = []
            max_rows = 0
            for row in rows:
                try:
                    allowed.append(Operation(row.operation))
                except ValueError:
                    logger.warning("unknown_operation_in_policy", role=role.value, operation=row.operation)
                    continue
                max_rows = max(max_rows, row.max_rows or 0)

        if role == Role.ADMIN:
            allowed.append(Operation.DDL)

        return RolePermissionSummary(allowed_operations=frozenset(allowed), max_rows=max_rows)

    def list_permissions(self) -> dict:
        """All stored permissions grouped by role."""
        result = {role.value: [] for role in Role}
        with self._session() as db:
            for row in db.query(RolePermission).order_by(RolePermission.role, RolePermission.id).all():
                result.setdefault(row.role, []).append({
                    "operation": row.operation,
                    "is_allowed": bool(row.is_allowed),
                    "max_rows": row.max_rows,
                })
        return result

    def update_permission(
        self,
        role: Role,
        operation: Operation,
        is_allowed: bool,
        max_rows: Optional[int] = None
    ) -> OperationPermission:
        """
        Change one role permission.

        Raises:
            PermissionUpdateError: For DDL/UNKNOWN, or when clearing an
                ADMIN permission
        """
        if operation not in CONFIGURABLE_OPERATIONS:
            raise PermissionUpdateError(f"Operation {operation.value} is not configurable")

        if role == Role.ADMIN and not is_allowed:
            raise PermissionUpdateError("Cannot remove permissions from ADMIN role")

        if max_rows is None or max_rows < 0:
            max_rows = 1000 if is_allowed else 0

        with self._session() as db:
            permission = db.query(RolePermission).filter(
                RolePermission.role == role.value,
                RolePermission.operation == operation.value
            ).first()
            if permission is None:
                permission = RolePermission(role=role.value, operation=operation.value)
                db.add(permission)
            permission.is_allowed = bool(is_allowed)
            permission.max_rows = max_rows

        logger.info(
            "role_permission_updated",
            role=role.value,
            operation=operation.value,
            is_allowed=bool(is_allowed),
            max_rows=max_rows
        )
        return OperationPermission(allowed=bool(is_allowed), max_rows=max_rows)

    # ------------------------------------------------------------------
    # Database grants
    # ------------------------------------------------------------------

    def has_db_access(self, user_id: int, role: Role, connection_id: int) -> bool:
        """Check if a user may target a database. Admins need no grant."""
        if role == Role.ADMIN:
            return True

        with self._session() as db:
            grant = db.query(UserDbGrant).filter(
                UserDbGrant.user_id == user_id,
                UserDbGrant.db_connection_id == connection_id
            ).first()
            return grant is not None

    def accessible_connections(self, user_id: int, role: Role) -> List[dict]:
        """Active databases the user may target, ordered by name."""
        with self._session() as db:
            query = db.query(DbConnection).filter(DbConnection.is_active == True)  # noqa: E712
            if role != Role.ADMIN:
                query = query.join(
                    UserDbGrant, UserDbGrant.db_connection_id == DbConnection.id
                ).filter(UserDbGrant.user_id == user_id)
            return [conn.to_safe_dict() for conn in query.order_by(DbConnection.name).all()]

    def grant_access(self, user_id: int, connection_id: int) -> None:
        """Grant user access to a database. Granting twice is a no-op."""
        try:
            with self._session() as db:
                exists = db.query(UserDbGrant).filter(
                    UserDbGrant.user_id == user_id,
                    UserDbGrant.db_connection_id == connection_id
                ).first()
                if exists:
                    return
                db.add(UserDbGrant(user_id=user_id, db_connection_id=connection_id))
        except IntegrityError:
            # Concurrent grant of the same pair already inserted the row
            logger.debug("grant_already_exists", user_id=user_id, connection_id=connection_id)
            return
        logger.info("db_access_granted", user_id=user_id, connection_id=connection_id)

    def revoke_access(self, user_id: int, connection_id: int) -> None:
        """Revoke user access to a database."""
        with self._session() as db:
            deleted = db.query(UserDbGrant).filter(
                UserDbGrant.user_id == user_id,
                UserDbGrant.db_connection_id == connection_id
            ).delete()
        if deleted:
            logger.info("db_access_revoked", user_id=user_id, connection_id=connection_id)

    def seed_defaults(self) -> None:
        with self._session() as db:
            initialize_rbac(db)


def initialize_rbac(db: Session) -> None:
    """Seed default role permissions. Existing rows are left untouched."""
    for perm_data in DEFAULT_ROLE_PERMISSIONS:
        existing = db.query(RolePermission).filter(
            RolePermission.role == perm_data["role"].value,
            RolePermission.operation == perm_data["operation"].value
        ).first()
        if not existing:
            db.add(RolePermission(
                role=perm_data["role"].value,
                operation=perm_data["operation"].value,
                is_allowed=perm_data["is_allowed"],
                max_rows=perm_data["max_rows"]
            ))

    db.commit()

"""
Role Permission Model - Per-role SQL operation policy
"""
from sqlalchemy import Column, Integer, String, Boolean, UniqueConstraint
import enum

from sql_sentinel.database import Base


class Role(str, enum.Enum):
    """User roles, ordered by privilege."""
    ADMIN = "ADMIN"
    DEVELOPER = "DEVELOPER"
    ANALYST = "ANALYST"

    @property
    def level(self) -> int:
        return ROLE_HIERARCHY[self]

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Parse a role name case-insensitively."""
        try:
            return cls(value.strip().upper())
        except (AttributeError, ValueError):
            raise ValueError(f"Unknown role: {value}")


ROLE_HIERARCHY = {
    Role.ADMIN: 3,
    Role.DEVELOPER: 2,
    Role.ANALYST: 1,
}


def has_role(user_role: Role, required_role: Role) -> bool:
    """Check if user_role is at least as privileged as required_role."""
    return user_role.level >= required_role.level


class Operation(str, enum.Enum):
    """Normalized SQL operation categories used for policy lookup."""
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    JOIN = "JOIN"
    CTE = "CTE"
    DDL = "DDL"
    UNKNOWN = "UNKNOWN"


# Operations stored in role_permissions. DDL and UNKNOWN are decided in code.
CONFIGURABLE_OPERATIONS = (
    Operation.SELECT,
    Operation.INSERT,
    Operation.UPDATE,
    Operation.DELETE,
    Operation.JOIN,
    Operation.CTE,
)


class RolePermission(Base):
    """Whether a role may run an operation, and its row cap."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "operation", name="uq_role_operation"),
    )

    id = Column(Integer, primary_key=True, index=True)
    role = Column(String(20), nullable=False, index=True)
    operation = Column(String(20), nullable=False)
    is_allowed = Column(Boolean, default=False, nullable=False)
    max_rows = Column(Integer, default=1000, nullable=False)

    def __repr__(self) -> str:
        return f"<RolePermission {self.role}:{self.operation} allowed={self.is_allowed} max_rows={self.max_rows}>"

"""
Database Connection Model - Target database configurations
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
import enum

from sql_sentinel.database import Base


class ConnectionType(str, enum.Enum):
    """Supported database engines."""
    POSTGRESQL = "POSTGRESQL"
    MYSQL = "MYSQL"
    ORACLE = "ORACLE"
    SQLITE = "SQLITE"

    @classmethod
    def parse(cls, value) -> "ConnectionType":
        """Parse an engine type case-insensitively."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported database type: {value}")


# Fields whose change requires the live pool to be rebuilt
POOL_IDENTITY_FIELDS = ("db_type", "host", "port", "database_name", "username", "password_encrypted", "is_active")


class DbConnection(Base):
    """A target database that users may query."""
    __tablename__ = "db_connections"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    db_type = Column(String(20), nullable=False)

    # Connection details
    host = Column(String(255), nullable=True)  # Unused for sqlite
    port = Column(Integer, nullable=True)
    database_name = Column(String(500), nullable=False)  # File path for sqlite
    username = Column(String(255), nullable=True)
    password_encrypted = Column(Text, nullable=True)  # Encrypted at rest

    is_active = Column(Boolean, default=True, nullable=False)

    # Metadata
    created_by = Column(Integer, nullable=True)  # User ID
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def engine_type(self) -> ConnectionType:
        return ConnectionType.parse(self.db_type)

    def to_safe_dict(self) -> dict:
        """Connection details without the credential."""
        return {
            "id": self.id,
            "name": self.name,
            "db_type": self.db_type,
            "host": self.host,
            "port": self.port,
            "database_name": self.database_name,
            "username": self.username,
            "is_active": self.is_active,
        }

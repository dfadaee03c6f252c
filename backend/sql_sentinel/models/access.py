"""
User Database Grant Model - Which users may target which databases
"""
from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint

from sql_sentinel.database import Base


class UserDbGrant(Base):
    """Authorizes one user to target one database connection."""
    __tablename__ = "user_db_access"
    __table_args__ = (
        UniqueConstraint("user_id", "db_connection_id", name="uq_user_db_connection"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    db_connection_id = Column(
        Integer,
        ForeignKey("db_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

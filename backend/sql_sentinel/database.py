"""
Metadata database connection and session management

The metadata database holds role permissions, database connection configs
and user grants. It is never reachable from user-submitted SQL; target
databases are handled by sql_sentinel.connections.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from contextlib import contextmanager
from typing import Generator, Optional
import os

from sql_sentinel.config import settings

Base = declarative_base()


def create_app_engine(database_url: str, echo: bool = False) -> Engine:
    """Create the metadata database engine."""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            directory = os.path.dirname(url.database)
            if directory:
                os.makedirs(directory, exist_ok=True)
        return create_engine(
            url,
            echo=echo,
            connect_args={'check_same_thread': False}
        )

    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=echo,
        connect_args={'connect_timeout': 10}
    )


app_engine = create_app_engine(settings.DATABASE_URL, echo=settings.DEBUG)

AppSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)


@contextmanager
def get_app_db_context(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """Context manager for metadata DB session."""
    db = (session_factory or AppSessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_app_db(engine: Optional[Engine] = None) -> None:
    """Create all metadata tables."""
    # Register models on Base.metadata before create_all
    import sql_sentinel.models  # noqa: F401

    Base.metadata.create_all(bind=engine or app_engine)

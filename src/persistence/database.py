"""Engine, session factory and table creation."""
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from src.persistence.models import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite writer waits for the scheduler or a script to finish its commit
SQLITE_BUSY_TIMEOUT = 30


def build_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite connections are shared with the scheduler's worker thread, so
    the same-thread check is off and writers wait instead of failing fast.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )

    return create_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the applications and checkpoint tables if they are missing."""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.debug("Tables ensured on %s", bind.url.render_as_string(hide_password=True))


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Session that commits on success and rolls back on any error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

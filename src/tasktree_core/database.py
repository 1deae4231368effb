"""Database connection, session management and the atomic unit of work."""
import logging
from functools import lru_cache
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from .config import get_settings
from .results import ErrorKind, Result, ResultError

logger = logging.getLogger("tasktree-core.database")

T = TypeVar("T")


def build_engine(database_url: str) -> Engine:
    """Create an engine with pool settings suited to the backend."""
    engine_kwargs: dict[str, object] = {"pool_pre_ping": True}
    if database_url.startswith("postgres"):
        engine_kwargs.update(
            {
                "pool_size": 3,         # Base pool of 3 connections
                "max_overflow": 7,      # Allow up to 10 total connections
                "pool_recycle": 3600,   # Recycle connections every hour
                "pool_timeout": 30,     # Timeout after 30 seconds
            }
        )
    engine = create_engine(database_url, **engine_kwargs)
    if database_url.startswith("sqlite"):
        # Let SQLAlchemy own BEGIN so SAVEPOINTs and rollbacks behave under pysqlite
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):  # type: ignore[no-redef]
            conn.exec_driver_sql("BEGIN")
    return engine


@lru_cache
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache
def get_sessionmaker() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


def run_atomic(db: Session, work: Callable[[], Result[T]], description: str) -> Result[T]:
    """
    Run ``work`` as one transaction.

    Commits when the work returns a successful result, rolls back when it
    returns a failure. A ResultError raised from inside the work rolls back
    and comes back as its failure. Storage errors roll back and come back as
    INTERNAL (or CONFLICT for integrity violations such as a concurrent
    duplicate name). Any other exception rolls back and propagates.

    Args:
        db: Database session
        work: Callable performing validation and all writes, without committing
        description: Short label for log messages

    Returns:
        The work's result, or an INTERNAL/CONFLICT failure
    """
    try:
        result = work()
        if result.ok:
            db.commit()
            logger.debug(f"Committed {description}")
        else:
            db.rollback()
            logger.debug(f"Rolled back {description}: {result.error.kind.value}")
        return result
    except ResultError as e:
        logger.warning(f"Aborted {description}: {e.failure.message}")
        db.rollback()
        return Result.from_failure(e.failure)
    except IntegrityError as e:
        logger.warning(f"Integrity error during {description}: {e.orig}")
        db.rollback()
        return Result.fail(ErrorKind.CONFLICT, f"Conflicting write during {description}")
    except SQLAlchemyError as e:
        logger.error(f"Database error during {description}: {e}", exc_info=True)
        db.rollback()
        return Result.fail(ErrorKind.INTERNAL, f"Storage failure during {description}")
    except Exception:
        db.rollback()
        raise

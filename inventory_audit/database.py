"""
Database configuration and session management for the Inventory Audit service.

This module sets up the database connection using SQLAlchemy and provides
a session factory, the FastAPI session dependency and the unit-of-work scope
every mutating operation runs in.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from . import config
from .errors import InvalidArgument, StoreUnavailable

logger = logging.getLogger(__name__)

SKU_CONSTRAINT = "uq_inventory_items_sku"

# SQLite connections are shared with the FastAPI threadpool
connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine       = create_engine(config.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base         = declarative_base()


def get_db():
    """
    Dependency function that provides a database session.

    Yields:
        Session: SQLAlchemy database session

    Usage:
        Use as a FastAPI dependency to inject database sessions into route handlers.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_sku_violation(exc: IntegrityError) -> bool:
    """
    Tell whether a unique-constraint failure concerns the inventory SKU.

    PostgreSQL reports the constraint name, SQLite reports the column.
    """
    message = str(exc.orig).lower()
    return SKU_CONSTRAINT in message or "inventory_items.sku" in message


@contextmanager
def unit_of_work(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Run a block inside one database transaction.

    The session is committed when the block exits normally and rolled back
    when anything is raised, so either every write in the block is visible
    or none is.

    Args:
        session_factory: Session factory to use (defaults to SessionLocal)

    Yields:
        Session: the transaction's session

    Raises:
        InvalidArgument: if the commit violates the SKU uniqueness constraint
        StoreUnavailable: if the database cannot be reached or times out
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_sku_violation(exc):
            raise InvalidArgument("SKU already exists") from exc
        raise
    except OperationalError as exc:
        db.rollback()
        logger.error(f"Database unavailable, transaction rolled back: {exc}")
        raise StoreUnavailable("Database unavailable, please retry") from exc
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def read_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Session for read-only work.

    Raises:
        StoreUnavailable: if the database cannot be reached or times out
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
    except OperationalError as exc:
        logger.error(f"Database unavailable during read: {exc}")
        raise StoreUnavailable("Database unavailable, please retry") from exc
    finally:
        db.close()

"""
Database engine, session factory and transaction helper.

Every mutating service call runs inside `transaction(db, ...)`: it commits
on success, rolls back on any exception, and converts SQLAlchemy failures
into PersistenceError so callers can tell "the request was invalid"
(a result model with an error message) apart from "the system is broken".
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

import config
from models.tables import Base

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Unexpected database failure (connection lost, constraint violation, ...)."""


engine = create_engine(config.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


# FastAPI Depends(get_db)
def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, action: str) -> Iterator[Session]:
    """
    Run a block as one all-or-nothing unit of work.

    Args:
        db:     Open session
        action: Short description used in log lines and error messages
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{action} failed, transaction rolled back: {e}")
        raise PersistenceError(f"{action} failed") from e
    except Exception:
        db.rollback()
        raise


def is_postgres(db: Session) -> bool:
    bind = db.get_bind()
    return bind.dialect.name == "postgresql"

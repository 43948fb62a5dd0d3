"""Database session management with the context manager pattern.

Usage:
    with db_session() as db:
        quote = service.get_quote(db, quote_id)
        db.commit()
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from quotetrack.utils.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions with automatic cleanup.

    The session is rolled back on exception and always closed on exit.
    You must call ``db.commit()`` to persist changes.

    Raises:
        RuntimeError: If database not initialized
    """
    from quotetrack.storage.database.base import get_session

    db = get_session()
    try:
        logger.debug("db_session_created", session_id=id(db))
        yield db
    except Exception as e:
        logger.error(
            "db_session_error_rollback",
            error=str(e),
            error_type=type(e).__name__,
            session_id=id(db),
        )
        db.rollback()
        raise
    finally:
        logger.debug("db_session_closed", session_id=id(db))
        db.close()

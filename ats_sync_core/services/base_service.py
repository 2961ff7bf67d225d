"""
Base service with the session handling shared by every sync engine service.

Services receive a SQLAlchemy session from the caller. Writes that must
survive a later failure of the surrounding sync (audit log entries,
credential status changes, mappings) are committed immediately through
``_commit``.
"""

from contextlib import contextmanager
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_config import get_db_manager
from ..exceptions import ErrorCode, RepositoryError
from ..utils.logger import get_logger


class BaseService:
    """Holds the session and logger and provides commit/rollback helpers."""

    def __init__(self, session: Optional[Session] = None):
        """
        Initialize the service.

        Args:
            session: Session to use. Defaults to the scoped session of the
                global database manager.
        """
        if session is None:
            session = get_db_manager().get_session()
        self.session = session
        self.logger = get_logger()

    def _commit(self, operation: str) -> None:
        """Commit the session, translating database errors into RepositoryError."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(
                f"Database error during {operation}: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                operation=operation,
            ) from e

    @contextmanager
    def transaction(self, operation: str = "transaction"):
        """
        Run a block in a transaction.

        Usage:
            with service.transaction("store_mapping"):
                service.session.add(row)
                # Commits on success, rolls back on exception
        """
        try:
            yield self.session
        except Exception:
            self.session.rollback()
            raise
        self._commit(operation)

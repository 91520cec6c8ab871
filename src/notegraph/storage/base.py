"""Session management shared by the repositories."""
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notegraph.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)


class SessionManager:
    """Hands out SQLAlchemy sessions, sharing one across a batch.

    Outside a batch every ``scope()`` is its own transaction that commits
    on exit. Inside ``batch()`` all scopes opened on the same thread reuse
    the batch session and only flush, so the whole batch commits once or
    rolls back as a unit. Callbacks registered with ``after_commit`` during
    a batch run once it commits and are dropped if it rolls back.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the engine.
    """

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory
        self._local = threading.local()

    def _active_batch(self) -> Optional[Session]:
        return getattr(self._local, "batch", None)

    @property
    def in_batch(self) -> bool:
        return self._active_batch() is not None

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the current batch commits, or now outside one."""
        pending = getattr(self._local, "pending", None)
        if pending is None:
            callback()
        else:
            pending.append(callback)

    @contextmanager
    def scope(self) -> Iterator[Session]:
        """Yield a session; commit on success, roll back on error."""
        batch = self._active_batch()
        if batch is not None:
            yield batch
            batch.flush()
            return

        with self.session_factory() as session:
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(
                    f"Database operation failed: {e}",
                    operation="commit",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            except Exception:
                session.rollback()
                raise

    @contextmanager
    def batch(self) -> Iterator[Session]:
        """Group every scope on this thread into a single transaction.

        Nested calls join the outermost batch. Deferred callbacks run in
        registration order after the commit.
        """
        outer = self._active_batch()
        if outer is not None:
            yield outer
            return

        session = self.session_factory()
        pending: List[Callable[[], None]] = []
        self._local.batch = session
        self._local.pending = pending
        try:
            yield session
            session.commit()
            logger.debug("Batch committed")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Batch rolled back after database error: {e}")
            raise StorageError(
                f"Batch failed and was rolled back: {e}",
                operation="batch",
                code=ErrorCode.STORAGE_BATCH_FAILED,
                original_error=e,
            ) from e
        except Exception as e:
            session.rollback()
            logger.warning(f"Batch rolled back: {e}")
            raise
        finally:
            self._local.batch = None
            self._local.pending = None
            session.close()

        for callback in pending:
            callback()

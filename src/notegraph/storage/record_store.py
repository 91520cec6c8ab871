"""Record store facade: one engine, two repositories, shared batches."""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from notegraph.models.db_models import get_session_factory, init_db
from notegraph.storage.base import SessionManager
from notegraph.storage.edge_repository import EdgeRepository
from notegraph.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class RecordStore:
    """Owns the database engine and the note and edge repositories.

    Args:
        engine: Existing engine to use. Created from config when omitted.
        in_memory: Force an in-memory database when no engine is given.
    """

    def __init__(
        self, engine: Optional[Engine] = None, in_memory: Optional[bool] = None
    ) -> None:
        self.engine = engine if engine is not None else init_db(in_memory=in_memory)
        self.sessions = SessionManager(get_session_factory(self.engine))
        self.notes = NoteRepository(self.sessions)
        self.edges = EdgeRepository(self.sessions)
        logger.debug(f"Record store ready on {self.engine.url}")

    @contextmanager
    def batch(self) -> Iterator[Session]:
        """Run every repository call inside the block as one transaction.

        The batch commits once on exit. Any exception rolls back every
        write made inside it.
        """
        with self.sessions.batch() as session:
            yield session

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Defer ``callback`` until the open batch commits; run it now otherwise."""
        self.sessions.after_commit(callback)

    def close(self) -> None:
        self.engine.dispose()

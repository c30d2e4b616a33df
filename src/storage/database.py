"""Database engine and session handling.

SQLModel sessions are blocking; ``Database.run`` moves each unit of work
onto the default thread-pool executor so the event loop keeps streaming.
"""

import asyncio
import functools
from typing import Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from shared.errors import PersistenceError
from shared.logging import get_logger

import storage.tables  # noqa: F401  registers the tables on SQLModel.metadata

logger = get_logger(__name__)

T = TypeVar("T")


class Database:
    """Owns the engine; hands out sessions for single units of work."""

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, echo=echo, connect_args=connect_args)

        if url.startswith("sqlite"):
            @event.listens_for(self.engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        SQLModel.metadata.create_all(self.engine)
        logger.info("Database tables ready", url=self.engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _run_sync(self, work: Callable[[Session], T]) -> T:
        try:
            with self.session() as session:
                return work(session)
        except SQLAlchemyError as e:
            logger.error("Database operation failed", error=str(e))
            raise PersistenceError(f"Database operation failed: {e}") from e

    async def run(self, work: Callable[[Session], T]) -> T:
        """
        Run ``work(session)`` in the thread pool.

        Raises:
            PersistenceError: If the database raised
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._run_sync, work))

    def dispose(self) -> None:
        self.engine.dispose()

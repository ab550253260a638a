"""
Relational data-access context for the storefront.

`Database` owns the SQLAlchemy engine and the session factory. The app builds
one at startup and hands out a fresh ORM session per request, so nothing here
is module-global.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    def __init__(self, url: str, engine: Optional[Engine] = None):
        self.url = url
        self.engine = engine or self._build_engine(url)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    @staticmethod
    def _build_engine(url: str) -> Engine:
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            # in-memory databases only live as long as their single connection
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, **kwargs)
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            return engine
        return create_engine(url, pool_pre_ping=True)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Database ready at %s", self.engine.url.render_as_string(hide_password=True))

    def table_names(self):
        return inspect(self.engine).get_table_names()

    def session(self) -> Session:
        return self.session_factory()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency: one ORM session per request, closed afterwards."""
    session = request.app.state.database.session()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or roll all of it back."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def create_record(session: Session, model: Type[T], data: BaseModel, **extra) -> T:
    """Insert a row built from a pydantic payload and flush it to get its id."""
    record = model(**data.model_dump(), **extra)
    session.add(record)
    session.flush()
    return record

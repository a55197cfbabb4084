import logging
import threading
from contextlib import contextmanager
from typing import Optional

from fastapi import Request
from sqlalchemy import String, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy.sql.functions import FunctionElement
from sqlmodel import SQLModel, create_engine

from .config import DATABASE_URL

# Import all models to ensure they are registered with SQLModel metadata
from .models import Task, User  # noqa: F401

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


class fold(FunctionElement):
    """Unicode-aware case folding for case-insensitive comparisons."""
    type = String()
    name = "fold"
    inherit_cache = True


@compiles(fold)
def _compile_fold(element, compiler, **kw):
    return "lower(%s)" % compiler.process(element.clauses, **kw)


@compiles(fold, "sqlite")
def _compile_fold_sqlite(element, compiler, **kw):
    # SQLite's own lower() only folds ASCII
    return "casefold(%s)" % compiler.process(element.clauses, **kw)


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def _register_sqlite_functions(engine: Engine) -> Engine:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.create_function("casefold", 1, _casefold, deterministic=True)

    return engine


def _create_engine(url: str) -> Engine:
    if _is_memory_sqlite(url):
        # One shared connection, otherwise every session sees an empty database
        return _register_sqlite_functions(create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        ))

    if url.startswith("sqlite"):
        return _register_sqlite_functions(create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
        ))

    # Neon/Postgres: disable pooling for serverless and enable pre-ping
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        poolclass=NullPool,
    )


class Database:
    """Handle on the task store.

    The engine is created lazily by :meth:`connect`, which may be called any
    number of times; only the first call builds the engine and the tables.
    """

    def __init__(self, url: str = DATABASE_URL):
        self.url = url
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._connected = False
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> Engine:
        if self._connected:
            return self.engine

        with self._lock:
            if not self._connected:
                self.engine = _create_engine(self.url)
                SQLModel.metadata.create_all(bind=self.engine)
                self._session_factory = sessionmaker(
                    autocommit=False, autoflush=False, bind=self.engine
                )
                self._connected = True
                logger.info("database_connected", extra={"url": self.engine.url.render_as_string()})
        return self.engine

    def dispose(self) -> None:
        with self._lock:
            if self.engine is not None:
                self.engine.dispose()
            self.engine = None
            self._session_factory = None
            self._connected = False

    @contextmanager
    def session(self):
        """Get a database session (context manager style).

        Usage:
            with database.session() as session:
                # do something with session
        """
        self.connect()
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()


def get_db(request: Request):
    """Dependency to get a session from the application's database handle."""
    database: Database = request.app.state.database
    with database.session() as db:
        yield db

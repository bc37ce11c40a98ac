import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:")


def _create_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    engine_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if _is_memory_url(database_url):
        # every connection must see the same in-memory database
        engine_args["poolclass"] = StaticPool

    eng = create_engine(database_url, connect_args=connect_args, **engine_args)
    if database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


class Database:
    """Store handle: one engine and session factory per process.

    Built explicitly by the application factory (or by tests) and disposed on
    shutdown instead of living as import-time module state.
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        self.url = database_url or get_settings().database_url
        self.engine = _create_engine(self.url)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session: Session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("database_disposed: url=%s", self.engine.url.render_as_string())

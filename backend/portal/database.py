# portal/database.py
from __future__ import annotations

from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portal.logs import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or url.endswith(":memory:")


class Database:
    """
    Owns the engine (connection pool) and session factory.

    Constructed by create_app(), initialised on startup (or first use)
    and disposed on shutdown. Nothing in the app reaches for a module-level
    engine; routes receive sessions through get_db().
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker[Session]] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self.init()
        assert self._engine is not None
        return self._engine

    def init(self) -> None:
        if self._engine is not None:
            return

        kwargs: dict = {"echo": self.echo, "future": True}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            # one shared connection so every session sees the same in-memory db
            if _is_memory_sqlite(self.url):
                kwargs["poolclass"] = StaticPool

        self._engine = create_engine(self.url, **kwargs)
        self._sessionmaker = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)

        # models must be imported before create_all
        from portal import models  # noqa: F401

        Base.metadata.create_all(bind=self._engine)
        logger.info("database_ready", url=self._engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        if self._sessionmaker is None:
            self.init()
        assert self._sessionmaker is not None
        return self._sessionmaker()

    def dispose(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("database_disposed")


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()

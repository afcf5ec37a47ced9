"""Database lifecycle and session management with connection pooling"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from settlement_gateway.infrastructure.database.models import Base


class Database:
    """
    Owns the engine and session factory.

    Constructed by the process entry point and injected into every component;
    `open()` / `close()` bracket its lifetime.
    """

    def __init__(self, url: str, **engine_kwargs: Any):
        self.url = url
        self.engine_kwargs = engine_kwargs
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self) -> "Database":
        if self.engine is not None:
            return self

        self.engine = create_engine(self.url, **self._engine_options())
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self._session_factory = None

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self._require_engine())

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self._require_engine())

    def new_session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session scope; the caller commits, anything uncommitted is rolled back"""
        db = self.new_session()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("Database is not open")
        return self.engine

    def _engine_options(self) -> Dict[str, Any]:
        if self.url.startswith("sqlite"):
            options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        else:
            # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
            options = {
                "pool_pre_ping": True,  # Verify connections before using
                "pool_size": 10,
                "max_overflow": 10,
                "pool_recycle": 3600,
            }
        options.update(self.engine_kwargs)
        return options

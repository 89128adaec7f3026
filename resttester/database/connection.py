from __future__ import annotations

import itertools
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from resttester.config import Config
from resttester.database.models import Base


class BucketNameSequence:
    """Hands out unique bucket names for one tester (or one test session)."""

    def __init__(self, prefix: str = "resttester_bucket"):
        self.prefix = prefix
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            return f"{self.prefix}_{next(self._counter)}"


def _create_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            future=True,
        )
    return create_engine(database_url, pool_pre_ping=True, future=True)


class DataStore:
    """One backing bucket: an engine, its schema, and the clock used to stamp changes."""

    def __init__(self, name: str, config: Config, clock: Callable[[], float] | None = None):
        self.name = name
        self.url = config.get_database_url(name)
        self._clock = clock or time.monotonic
        self._lock = threading.RLock()
        self.engine = _create_engine(self.url)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self.engine)

    def now(self) -> float:
        return self._clock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def reset(self) -> None:
        with self._lock:
            Base.metadata.drop_all(self.engine)
            Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

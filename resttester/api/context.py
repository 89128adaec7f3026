from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from resttester.config import Config, DatabaseConfig
from resttester.database import operations
from resttester.database.connection import BucketNameSequence, DataStore
from resttester.database.models import ALL_CHANNELS, GUEST_USERNAME

logger = logging.getLogger("resttester.server")


@dataclass(frozen=True)
class Principal:
    name: str
    # None grants every channel
    channels: frozenset[str] | None

    @property
    def is_admin(self) -> bool:
        return self.channels is None


ADMIN_PRINCIPAL = Principal(name="ADMIN", channels=None)


class Database:
    def __init__(self, config: DatabaseConfig, store: DataStore, lag_seconds: float):
        self.config = config
        self.store = store
        self.lag_seconds = lag_seconds

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def allow_empty_password(self) -> bool:
        return self.config.allow_empty_password

    def visibility_cutoff(self) -> float:
        return self.store.now() - self.lag_seconds

    def stable_sequence(self) -> int:
        with self.store.session() as session:
            return operations.stable_sequence(session, self.visibility_cutoff())

    def pending_change_count(self) -> int:
        with self.store.session() as session:
            return operations.pending_change_count(session, self.visibility_cutoff())

    def ensure_guest(self) -> None:
        with self.store.session() as session:
            if operations.get_user(session, GUEST_USERNAME) is None:
                operations.upsert_user(session, GUEST_USERNAME, channels=[], disabled=True)

    def set_guest_enabled(self, enabled: bool) -> None:
        with self.store.session() as session:
            operations.upsert_user(
                session,
                GUEST_USERNAME,
                channels=[ALL_CHANNELS] if enabled else [],
                disabled=not enabled,
            )

    def get_user_channels(self, name: str) -> list[str]:
        with self.store.session() as session:
            user = operations.get_user(session, name)
            if user is None:
                raise operations.NotFoundError(f"User not found: {name!r}")
            return list(user.channels)

    def set_user_channels(self, name: str, channels: Iterable[str]) -> None:
        with self.store.session() as session:
            operations.set_user_channels(session, name, channels)

    def reset(self) -> None:
        """Flush every document, change, user and design doc, then recreate the guest user."""
        self.store.reset()
        self.ensure_guest()


class ServerContext:
    """Owns the databases served by the admin and public entry points."""

    def __init__(
        self,
        config: Config,
        bucket_names: BucketNameSequence | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.config = config
        self.bucket_names = bucket_names or BucketNameSequence(config.bucket_prefix)
        self.clock = clock or time.monotonic
        self._databases: dict[str, Database] = {}

    def add_database(self, database_config: DatabaseConfig) -> Database:
        database_config.validate()
        if database_config.name in self._databases:
            raise ValueError(f"Duplicate database name {database_config.name!r}")

        bucket_name = self.bucket_names.next()
        store = DataStore(bucket_name, self.config, clock=self.clock)
        database = Database(database_config, store, self.config.lag_for(database_config))
        database.ensure_guest()
        self._databases[database_config.name] = database
        logger.info(f"Opened database {database_config.name!r} on bucket {bucket_name}")
        return database

    def get_database(self, name: str) -> Database | None:
        return self._databases.get(name)

    def all_databases(self) -> list[Database]:
        return list(self._databases.values())

    def close(self) -> None:
        for database in self._databases.values():
            database.store.close()
        self._databases.clear()

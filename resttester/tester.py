from __future__ import annotations

import threading
import time
from typing import Callable, Iterable, Mapping

from resttester.api.context import Database, ServerContext
from resttester.api.main import create_admin_app, create_public_app
from resttester.config import Config, DatabaseConfig
from resttester.core.errors import HarnessError
from resttester.core.logging import setup_logger
from resttester.core.retry import Retry, Success, T, Worker, poll
from resttester.core.sleeper import SleeperPolicy, sleeper_from_config
from resttester.database.connection import BucketNameSequence, DataStore
from resttester.dispatch.harness import Dispatcher
from resttester.dispatch.models import Authority, DispatchRequest, DispatchResponse, Identity
from resttester.polling import (
    ChangesResults,
    ViewResult,
    wait_for_changes_worker,
    wait_for_view_results_worker,
)


class RestTester:
    """One test scenario: a server context with a single database, both entry points, and polling helpers.

    The database and dispatcher are created lazily on first use. Unless
    ``admin_party`` is False the guest user can read and write every channel.
    """

    def __init__(
        self,
        config: Config | None = None,
        database_config: DatabaseConfig | None = None,
        admin_party: bool = True,
        bucket_names: BucketNameSequence | None = None,
        sleeper: SleeperPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
        cancel: threading.Event | None = None,
    ):
        self.config = config or Config()
        self.config.validate()
        self.database_config = database_config or DatabaseConfig()
        self.admin_party = admin_party
        self.bucket_names = bucket_names or BucketNameSequence(self.config.bucket_prefix)
        self.sleeper = sleeper or sleeper_from_config(self.config)
        self.sleep = sleep or time.sleep
        self.clock = clock or time.monotonic
        self.cancel = cancel
        self.logger = setup_logger("resttester", self.config)

        self._server_context: ServerContext | None = None
        self._dispatcher: Dispatcher | None = None

    # Setup

    @property
    def server_context(self) -> ServerContext:
        if self._server_context is None:
            context = ServerContext(self.config, bucket_names=self.bucket_names, clock=self.clock)
            database = context.add_database(self.database_config)
            self._server_context = context
            if self.admin_party:
                database.set_guest_enabled(True)
        return self._server_context

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            context = self.server_context
            self._dispatcher = Dispatcher(
                {
                    Authority.ADMIN: create_admin_app(context),
                    Authority.PUBLIC: create_public_app(context),
                },
                base_url=self.config.base_url,
            )
        return self._dispatcher

    def get_database(self) -> Database:
        for database in self.server_context.all_databases():
            return database
        raise HarnessError("No database found")

    def bucket(self) -> DataStore:
        return self.get_database().store

    def reset_bucket(self) -> None:
        database = self.get_database()
        database.reset()
        if self.admin_party:
            database.set_guest_enabled(True)

    def set_admin_party(self, party_time: bool) -> None:
        self.admin_party = party_time
        self.get_database().set_guest_enabled(party_time)

    def get_user_channels(self, username: str) -> list[str]:
        return self.get_database().get_user_channels(username)

    def set_user_channels(self, username: str, channels: Iterable[str]) -> None:
        self.get_database().set_user_channels(username, channels)

    def close(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.close()
            self._dispatcher = None
        if self._server_context is not None:
            self._server_context.close()
            self._server_context = None

    def __enter__(self) -> "RestTester":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Dispatch

    def send(self, request: DispatchRequest) -> DispatchResponse:
        return self.dispatcher.dispatch(request)

    def send_request(
        self,
        method: str,
        resource: str,
        body: str | bytes = "",
        headers: Mapping[str, str] | None = None,
    ) -> DispatchResponse:
        return self.dispatcher.send(Authority.PUBLIC, method, resource, body, headers)

    def send_user_request(
        self,
        method: str,
        resource: str,
        body: str | bytes,
        username: str,
        password: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> DispatchResponse:
        identity = Identity(username, self.config.default_user_password if password is None else password)
        return self.dispatcher.send(Authority.PUBLIC, method, resource, body, headers, identity)

    def send_admin_request(
        self,
        method: str,
        resource: str,
        body: str | bytes = "",
        headers: Mapping[str, str] | None = None,
    ) -> DispatchResponse:
        return self.dispatcher.send(Authority.ADMIN, method, resource, body, headers)

    # Polling

    def _poll(self, description: str, worker: Worker[T]) -> T:
        return poll(
            description,
            worker,
            self.sleeper,
            cancel=self.cancel,
            timeout_seconds=self.config.retry_timeout_seconds,
            sleep=self.sleep,
            clock=self.clock,
        )

    def create_wait_for_changes_worker(self, num_changes_expected: int, changes_url: str, username: str):
        identity = Identity(username, self.config.default_user_password)
        return wait_for_changes_worker(self.dispatcher, num_changes_expected, changes_url, identity)

    def wait_for_changes(self, num_changes_expected: int, changes_url: str, username: str) -> ChangesResults:
        worker = self.create_wait_for_changes_worker(num_changes_expected, changes_url, username)
        return self._poll("Wait for changes", worker)

    def wait_for_n_view_results(self, num_results_expected: int, view_url_path: str) -> ViewResult:
        """Wait until the view at ``view_url_path`` (e.g. "/db/_design/foo/_view/bar") has enough rows."""
        worker = wait_for_view_results_worker(self.dispatcher, num_results_expected, view_url_path)
        description = f"Wait for {num_results_expected} view results for query to {view_url_path}"
        return self._poll(description, worker)

    def wait_for_sequence(self, seq: int) -> int:
        database = self.get_database()

        def worker():
            stable = database.stable_sequence()
            if stable < seq:
                return Retry(f"stable sequence {stable} < {seq}")
            return Success(stable)

        return self._poll(f"Wait for sequence {seq}", worker)

    def wait_for_pending_changes(self) -> None:
        database = self.get_database()

        def worker():
            pending = database.pending_change_count()
            if pending:
                return Retry(f"{pending} pending changes")
            return Success(0)

        self._poll("Wait for pending changes", worker)

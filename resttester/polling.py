"""Workers that poll the change feed and view queries until enough results show up."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from resttester.core.errors import DispatchError, ParseError
from resttester.core.retry import Failure, Outcome, Retry, Success, Worker
from resttester.dispatch.harness import Dispatcher
from resttester.dispatch.models import Authority, DispatchRequest, DispatchResponse, Identity


class ChangeRevision(BaseModel):
    model_config = ConfigDict(extra="allow")

    rev: str | None = None


class ChangeEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    seq: Any = None
    id: str | None = None
    changes: list[ChangeRevision] | None = None
    deleted: bool | None = None
    removed: list[str] | None = None


class ChangesResults(BaseModel):
    model_config = ConfigDict(extra="allow")

    results: list[ChangeEntry]
    last_seq: Any = None


class ViewRow(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    key: Any = None
    value: Any = None


class ViewResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    total_rows: int = 0
    rows: list[ViewRow]


def _parse(model: type[BaseModel], response: DispatchResponse) -> BaseModel:
    try:
        return model.model_validate_json(response.body)
    except ValidationError as exc:
        raise ParseError(
            f"Unexpected {model.__name__} body for {response.request.method} {response.request.path}: {exc}",
            status_code=response.status_code,
            method=response.request.method,
            path=response.request.path,
            body=response.text[:500],
        ) from exc


def wait_for_changes_worker(
    dispatcher: Dispatcher,
    num_changes_expected: int,
    changes_url: str,
    identity: Identity | None,
) -> Worker[ChangesResults]:
    request = DispatchRequest(Authority.PUBLIC, "GET", changes_url, identity=identity)

    def worker() -> Outcome[ChangesResults]:
        response = dispatcher.dispatch(request)
        if not response.ok:
            return Failure(DispatchError.from_response(response, "Changes request failed"))
        try:
            changes = _parse(ChangesResults, response)
        except ParseError as exc:
            return Failure(exc)
        if len(changes.results) < num_changes_expected:
            return Retry(f"{len(changes.results)} of {num_changes_expected} changes")
        return Success(changes)

    return worker


def wait_for_view_results_worker(
    dispatcher: Dispatcher,
    num_results_expected: int,
    view_url_path: str,
) -> Worker[ViewResult]:
    """View queries go through the admin authority so rows are never channel-filtered."""
    request = DispatchRequest(Authority.ADMIN, "GET", view_url_path)

    def worker() -> Outcome[ViewResult]:
        response = dispatcher.dispatch(request)
        if response.status_code != 200:
            return Failure(
                DispatchError.from_response(response, "Got unexpected response code from view call, expected 200")
            )
        try:
            result = _parse(ViewResult, response)
        except ParseError as exc:
            return Failure(exc)
        if len(result.rows) < num_results_expected:
            return Retry(f"{len(result.rows)} of {num_results_expected} view rows")
        return Success(result)

    return worker

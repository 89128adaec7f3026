from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi.testclient import TestClient

from resttester.core.logging import log_context
from resttester.dispatch.middleware import QuotedSlashMiddleware
from resttester.dispatch.models import Authority, DispatchRequest, DispatchResponse, Identity

logger = logging.getLogger("resttester.dispatch")


class Dispatcher:
    """Routes requests to one in-process ASGI entry point per authority.

    No sockets are opened, but each call goes through a full HTTP exchange
    (status line, headers, body). Nothing is carried over between calls:
    redirects are returned as-is and cookies are dropped after every request.
    """

    def __init__(self, entry_points: Mapping[Authority, Any], base_url: str = "http://localhost"):
        missing = [authority.value for authority in Authority if authority not in entry_points]
        if missing:
            raise ValueError(f"Missing entry points for authorities: {', '.join(missing)}")

        self.base_url = base_url
        self._clients = {
            Authority(authority): TestClient(
                QuotedSlashMiddleware(app),
                base_url=base_url,
                raise_server_exceptions=False,
                follow_redirects=False,
            )
            for authority, app in entry_points.items()
        }

    def dispatch(self, request: DispatchRequest) -> DispatchResponse:
        client = self._clients[request.authority]
        auth = None
        if request.identity is not None:
            auth = (request.identity.username, request.identity.password)

        with log_context(logger, authority=request.authority.value) as log:
            response = client.request(
                request.method,
                request.path,
                content=request.body_bytes(),
                headers=dict(request.headers),
                auth=auth,
            )
            client.cookies.clear()
            log.debug(
                f"{request.method} {request.path} -> {response.status_code}",
                extra={"status_code": response.status_code},
            )

        return DispatchResponse(
            request=request,
            url=str(response.url),
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    def send(
        self,
        authority: Authority,
        method: str,
        path: str,
        body: str | bytes = "",
        headers: Mapping[str, str] | None = None,
        identity: Identity | None = None,
    ) -> DispatchResponse:
        return self.dispatch(
            DispatchRequest(
                authority=authority,
                method=method,
                path=path,
                body=body,
                headers=dict(headers or {}),
                identity=identity,
            )
        )

    def close(self) -> None:
        for client in self._clients.values():
            client.close()


def assert_status(response: DispatchResponse, expected_status: int) -> None:
    if response.status_code != expected_status:
        raise AssertionError(
            f"Response status {response.status_code} (expected {expected_status}) for "
            f"{response.request.method} <{response.url}> : {response.text}"
        )

"""Request/response value types for in-process dispatch."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class Authority(str, Enum):
    """Which entry point handles a request.

    ADMIN reaches the privileged surface without credentials; PUBLIC goes
    through authentication and channel filtering.
    """

    ADMIN = "admin"
    PUBLIC = "public"


@dataclass(frozen=True)
class Identity:
    username: str
    password: str


@dataclass(frozen=True)
class DispatchRequest:
    authority: Authority
    method: str
    path: str
    body: str | bytes = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    identity: Identity | None = None

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ValueError(f"Resource paths must start with '/', got {self.path!r}")
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "authority", Authority(self.authority))

    def body_bytes(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        return self.body.encode("utf-8")


@dataclass(frozen=True)
class DispatchResponse:
    request: DispatchRequest
    url: str
    status_code: int
    headers: Mapping[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)

    def dump_body(self, logger: logging.Logger | None = None) -> None:
        (logger or logging.getLogger("resttester.dispatch")).info(self.text)

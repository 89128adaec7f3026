from __future__ import annotations

import json

import httpx
from pydantic import ValidationError


class HarnessError(Exception):
    error_type = "UNKNOWN"


class ConfigError(HarnessError, ValueError):
    error_type = "CONFIG"


class DispatchError(HarnessError):
    error_type = "DISPATCH"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        method: str | None = None,
        path: str | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.path = path
        self.body = body

    @classmethod
    def from_response(cls, response, message: str) -> "DispatchError":
        request = response.request
        return cls(
            f"{message}: status {response.status_code} for {request.method} {request.path}",
            status_code=response.status_code,
            method=request.method,
            path=request.path,
            body=response.text[:500],
        )


class ParseError(DispatchError):
    error_type = "PARSE_ERROR"


class RetryExhaustedError(HarnessError):
    error_type = "EXHAUSTED"

    def __init__(self, description: str, attempts: int):
        super().__init__(f"RetryLoop for {description} giving up after {attempts} attempts")
        self.description = description
        self.attempts = attempts


class MissingValueError(HarnessError):
    error_type = "NO_VALUE"


class RetryCancelledError(HarnessError):
    error_type = "CANCELLED"


class DeadlineExceededError(HarnessError):
    error_type = "TIMEOUT"


def classify_error(error: Exception) -> str:
    if hasattr(error, "error_type"):
        return getattr(error, "error_type")

    if isinstance(error, (ValidationError, json.JSONDecodeError)):
        return "PARSE_ERROR"

    if isinstance(error, httpx.HTTPError):
        return "DISPATCH"

    if isinstance(error, TimeoutError):
        return "TIMEOUT"

    return "UNKNOWN"

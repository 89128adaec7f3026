"""In-process HTTP dispatch against the admin and public entry points."""

from resttester.dispatch.harness import Dispatcher, assert_status
from resttester.dispatch.middleware import QuotedSlashMiddleware, fix_quoted_slashes
from resttester.dispatch.models import Authority, DispatchRequest, DispatchResponse, Identity

__all__ = [
    "Authority",
    "Dispatcher",
    "DispatchRequest",
    "DispatchResponse",
    "Identity",
    "QuotedSlashMiddleware",
    "assert_status",
    "fix_quoted_slashes",
]

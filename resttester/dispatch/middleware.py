from __future__ import annotations

import re
from urllib.parse import unquote

# Kept encoded in the routed path; handlers decode resource ids exactly once
_PRESERVED_ESCAPES = re.compile(r"(%2[fF]|%25)")


def fix_quoted_slashes(raw_path: str) -> str:
    parts = _PRESERVED_ESCAPES.split(raw_path)
    return "".join(part.upper() if index % 2 else unquote(part) for index, part in enumerate(parts))


class QuotedSlashMiddleware:
    """Re-derive the routed path from ``raw_path`` keeping %2F and %25 encoded."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("raw_path"):
            raw_path = scope["raw_path"].split(b"?", 1)[0].decode("latin-1")
            scope = dict(scope)
            scope["path"] = fix_quoted_slashes(raw_path)
        await self.app(scope, receive, send)

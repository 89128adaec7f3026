from __future__ import annotations

from urllib.parse import unquote

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from resttester.api.context import ADMIN_PRINCIPAL, Database, Principal, ServerContext
from resttester.database import operations
from resttester.database.models import GUEST_USERNAME

REALM = "resttester"

_basic = HTTPBasic(auto_error=False, realm=REALM)


def decode_resource_id(raw: str) -> str:
    # Routed paths keep %2F and %25 encoded so the id arrives as one segment
    return unquote(raw)


def get_server_context(request: Request) -> ServerContext:
    return request.app.state.server_context


def get_database(db: str, context: ServerContext = Depends(get_server_context)) -> Database:
    database = context.get_database(db)
    if database is None:
        raise HTTPException(status_code=404, detail=f"no such database {db!r}")
    return database


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def admin_principal() -> Principal:
    return ADMIN_PRINCIPAL


def authenticate(
    database: Database = Depends(get_database),
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> Principal:
    with database.store.session() as session:
        if credentials is None:
            guest = operations.get_user(session, GUEST_USERNAME)
            if guest is None or guest.disabled:
                raise _unauthorized("Login required")
            return Principal(name="GUEST", channels=frozenset(guest.channels))

        user = operations.get_user(session, credentials.username)
        if (
            user is None
            or user.name == GUEST_USERNAME
            or user.disabled
            or not operations.check_password(user, credentials.password)
        ):
            raise _unauthorized("Invalid login")
        return Principal(name=user.name, channels=frozenset(user.channels))

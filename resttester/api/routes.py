from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from resttester.api.context import Database, Principal
from resttester.api.dependencies import decode_resource_id, get_database
from resttester.api.schemas import DesignDocRequest, UserRequest
from resttester.database import operations
from resttester.database.models import GUEST_USERNAME


def _reject_reserved(doc_id: str, status_code: int) -> None:
    if not doc_id or doc_id.startswith("_"):
        raise HTTPException(status_code=status_code, detail=f"invalid document id {doc_id!r}")


def build_document_router(principal_dependency: Callable[..., Principal]) -> APIRouter:
    """Routes served by both authorities; the principal decides what each caller sees."""
    router = APIRouter()

    @router.get("/{db}/")
    @router.get("/{db}", include_in_schema=False)
    def database_info(
        database: Database = Depends(get_database),
        principal: Principal = Depends(principal_dependency),
    ):
        return {
            "db_name": database.name,
            "update_seq": database.stable_sequence(),
            "state": "Online",
        }

    @router.get("/{db}/_changes")
    def changes_feed(
        since: int = Query(default=0, ge=0),
        limit: int | None = Query(default=None, ge=1),
        database: Database = Depends(get_database),
        principal: Principal = Depends(principal_dependency),
    ):
        with database.store.session() as session:
            results = operations.changes_since(
                session,
                database.visibility_cutoff(),
                user_channels=principal.channels,
                since=since,
                limit=limit,
            )
        last_seq = results[-1]["seq"] if results else since
        return {"results": results, "last_seq": last_seq}

    @router.get("/{db}/{docid}")
    def get_document(
        docid: str,
        database: Database = Depends(get_database),
        principal: Principal = Depends(principal_dependency),
    ):
        doc_id = decode_resource_id(docid)
        _reject_reserved(doc_id, 404)
        with database.store.session() as session:
            document = operations.get_document(session, doc_id)
            if document is None or document.deleted:
                raise HTTPException(status_code=404, detail="missing")
            if not operations.can_access(principal.channels, document.channels):
                raise HTTPException(status_code=403, detail="forbidden")
            return operations.document_response(document)

    @router.put("/{db}/{docid}", status_code=201)
    def put_document(
        docid: str,
        body: dict[str, Any] = Body(...),
        database: Database = Depends(get_database),
        principal: Principal = Depends(principal_dependency),
    ):
        doc_id = decode_resource_id(docid)
        _reject_reserved(doc_id, 400)
        try:
            with database.store.session() as session:
                document = operations.put_document(session, doc_id, body, database.store.now())
                return {"id": document.doc_id, "rev": document.rev, "ok": True}
        except operations.ConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @router.delete("/{db}/{docid}")
    def delete_document(
        docid: str,
        rev: str | None = None,
        database: Database = Depends(get_database),
        principal: Principal = Depends(principal_dependency),
    ):
        doc_id = decode_resource_id(docid)
        _reject_reserved(doc_id, 400)
        try:
            with database.store.session() as session:
                document = operations.delete_document(session, doc_id, rev, database.store.now())
                return {"id": document.doc_id, "rev": document.rev, "ok": True}
        except operations.NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except operations.ConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    return router


def _user_key(name: str) -> str:
    name = decode_resource_id(name)
    return GUEST_USERNAME if name == "GUEST" else name


def build_admin_router() -> APIRouter:
    router = APIRouter()

    @router.get("/{db}/_user/{name}")
    def get_user(name: str, database: Database = Depends(get_database)):
        with database.store.session() as session:
            user = operations.get_user(session, _user_key(name))
            if user is None:
                raise HTTPException(status_code=404, detail="missing")
            return operations.user_response(user)

    @router.put("/{db}/_user/{name}")
    def put_user(name: str, payload: UserRequest, database: Database = Depends(get_database)):
        key = _user_key(name)
        with database.store.session() as session:
            existing = operations.get_user(session, key)
            password = payload.password
            if key != GUEST_USERNAME:
                if existing is None and password is None:
                    password = ""
                if password == "" and not database.allow_empty_password:
                    raise HTTPException(status_code=400, detail="Empty passwords are not allowed")
            user = operations.upsert_user(
                session,
                key,
                password=password,
                channels=payload.admin_channels,
                disabled=payload.disabled,
            )
            status_code = 201 if existing is None else 200
            response = operations.user_response(user)
        return JSONResponse(content=response, status_code=status_code)

    @router.put("/{db}/_design/{ddoc}", status_code=201)
    def put_design_doc(ddoc: str, payload: DesignDocRequest, database: Database = Depends(get_database)):
        views = {name: view.model_dump() for name, view in payload.views.items()}
        with database.store.session() as session:
            design = operations.put_design_doc(session, decode_resource_id(ddoc), views)
            return {"id": f"_design/{design.name}", "rev": design.rev, "ok": True}

    @router.get("/{db}/_design/{ddoc}")
    def get_design_doc(ddoc: str, database: Database = Depends(get_database)):
        with database.store.session() as session:
            design = operations.get_design_doc(session, decode_resource_id(ddoc))
            if design is None:
                raise HTTPException(status_code=404, detail="missing")
            return {"_id": f"_design/{design.name}", "_rev": design.rev, "views": design.views}

    @router.get("/{db}/_design/{ddoc}/_view/{view}")
    def query_view(
        ddoc: str,
        view: str,
        limit: int | None = Query(default=None, ge=1),
        database: Database = Depends(get_database),
    ):
        try:
            with database.store.session() as session:
                return operations.query_view(
                    session,
                    decode_resource_id(ddoc),
                    decode_resource_id(view),
                    database.visibility_cutoff(),
                    limit=limit,
                )
        except operations.NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @router.post("/{db}/_flush")
    def flush(database: Database = Depends(get_database)):
        database.reset()
        return {"ok": True}

    return router

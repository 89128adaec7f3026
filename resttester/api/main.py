from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from resttester.api.context import ServerContext
from resttester.api.dependencies import admin_principal, authenticate
from resttester.api.routes import build_admin_router, build_document_router

VERSION = "1.0.0"


def create_admin_app(context: ServerContext) -> FastAPI:
    app = FastAPI(title="resttester admin API", version=VERSION)
    app.state.server_context = context

    @app.get("/")
    def server_info():
        return {"ADMIN": True, "version": VERSION}

    app.include_router(build_admin_router())
    app.include_router(build_document_router(admin_principal))
    return app


def create_public_app(context: ServerContext) -> FastAPI:
    app = FastAPI(title="resttester public API", version=VERSION)
    app.state.server_context = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(context.config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=context.config.cors_max_age,
    )

    @app.get("/")
    def server_info():
        return {"welcome": "resttester", "version": VERSION}

    app.include_router(build_document_router(authenticate))
    return app

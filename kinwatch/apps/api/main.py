from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kinwatch.apps.api.errors import (
    http_exception_handler,
    invalid_path_handler,
    rpc_error_handler,
    starlette_http_exception_handler,
    store_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from kinwatch.apps.api.response import API_VERSION
from kinwatch.apps.api.routes.admin import router as admin_router
from kinwatch.apps.api.routes.audit import router as audit_router
from kinwatch.apps.api.routes.health import router as health_router
from kinwatch.apps.api.routes.self_serve import router as self_serve_router
from kinwatch.apps.api.routes.telemetry import router as telemetry_router
from kinwatch.core.config import get_settings
from kinwatch.core.errors import InvalidPathError, RpcError, StoreError
from kinwatch.core.logging import configure_logging


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Kinwatch API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(RpcError)
    async def _rpc_error_handler(request: Request, exc: RpcError):
        return await rpc_error_handler(request, exc)

    @app.exception_handler(InvalidPathError)
    async def _invalid_path_handler(request: Request, exc: InvalidPathError):
        return await invalid_path_handler(request, exc)

    @app.exception_handler(StoreError)
    async def _store_error_handler(request: Request, exc: StoreError):
        return await store_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    # Admin RPCs and the admin read views.
    app.include_router(admin_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Signed-in account operations.
    app.include_router(self_serve_router, prefix=f"/{API_VERSION}")
    # Device-side producer of telemetry and status writes.
    app.include_router(telemetry_router, prefix=f"/{API_VERSION}")

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Kinwatch API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Inject bearer auth and version metadata into the OpenAPI schema.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="Kinwatch API",
            version=API_VERSION,
            routes=app.routes,
        )
        schema["info"]["x-region"] = settings.region
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
        public_paths = {"/v1/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aisecretary.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from aisecretary.apps.api.response import API_VERSION
from aisecretary.apps.api.routes.calendar import router as calendar_router
from aisecretary.apps.api.routes.google_calendar import router as google_calendar_router
from aisecretary.apps.api.routes.health import router as health_router
from aisecretary.apps.api.routes.instructions import router as instructions_router
from aisecretary.apps.api.routes.messages import router as messages_router
from aisecretary.apps.api.routes.tasks import router as tasks_router
from aisecretary.apps.api.routes.tenants import router as tenants_router
from aisecretary.apps.api.routes.usage import router as usage_router
from aisecretary.apps.api.routes.webhook import router as webhook_router
from aisecretary.core.config import get_settings
from aisecretary.core.errors import SecretaryError
from aisecretary.core.logging import configure_logging
from aisecretary.services.telemetry import record_request


def _route_class(path: str) -> str:
    if path.startswith(f"/{API_VERSION}/webhook"):
        return "webhook"
    if path.startswith(f"/{API_VERSION}/health"):
        return "health"
    return "api"


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name, docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_request(
            route_class=_route_class(request.url.path),
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(SecretaryError)
    async def _domain_exception_handler(request: Request, exc: SecretaryError):
        return await domain_exception_handler(request, exc)

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

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(tenants_router, prefix=f"/{API_VERSION}")
    app.include_router(tasks_router, prefix=f"/{API_VERSION}")
    app.include_router(calendar_router, prefix=f"/{API_VERSION}")
    app.include_router(google_calendar_router, prefix=f"/{API_VERSION}")
    app.include_router(usage_router, prefix=f"/{API_VERSION}")
    app.include_router(messages_router, prefix=f"/{API_VERSION}")
    app.include_router(instructions_router, prefix=f"/{API_VERSION}")
    # LINE posts to the versioned path configured in the channel console.
    app.include_router(webhook_router, prefix=f"/{API_VERSION}")

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title=f"{app.title} v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=app.title, version=API_VERSION, routes=app.routes)
        schema["servers"] = [{"url": get_settings().app_base_url}]
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()

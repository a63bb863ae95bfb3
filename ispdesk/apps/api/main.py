from __future__ import annotations

import time
from uuid import uuid4
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ispdesk.apps.api.errors import (
    http_exception_handler,
    rate_limit_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from ispdesk.apps.api.rate_limit import RateLimitExceeded, apply_rate_limit_headers
from ispdesk.apps.api.response import API_VERSION
from ispdesk.apps.api.routes.audit import router as audit_router
from ispdesk.apps.api.routes.contracts import router as contracts_router
from ispdesk.apps.api.routes.coverage import router as coverage_router
from ispdesk.apps.api.routes.coverage_admin import router as coverage_admin_router
from ispdesk.apps.api.routes.dashboard import router as dashboard_router
from ispdesk.apps.api.routes.health import router as health_router
from ispdesk.apps.api.routes.packages import router as packages_router
from ispdesk.apps.api.routes.packages_admin import router as packages_admin_router
from ispdesk.apps.api.routes.payments import router as payments_router
from ispdesk.apps.api.routes.tickets import router as tickets_router
from ispdesk.apps.api.routes.work_orders import router as work_orders_router
from ispdesk.core.config import get_settings
from ispdesk.core.logging import configure_logging


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="ispdesk API", version=API_VERSION)

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
        apply_rate_limit_headers(request, response)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
        return await rate_limit_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Public intake and lookups.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(coverage_router, prefix=f"/{API_VERSION}")
    app.include_router(packages_router, prefix=f"/{API_VERSION}")
    app.include_router(tickets_router, prefix=f"/{API_VERSION}")
    # Back office.
    app.include_router(contracts_router, prefix=f"/{API_VERSION}")
    app.include_router(payments_router, prefix=f"/{API_VERSION}")
    app.include_router(work_orders_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(dashboard_router, prefix=f"/{API_VERSION}")
    app.include_router(packages_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(coverage_admin_router, prefix=f"/{API_VERSION}")

    logger.info("app_created name=%s version=%s", get_settings().app_name, API_VERSION)
    return app


app = create_app()

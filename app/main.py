import logging
import os
import sys
import time
import uuid
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes_bookings import router as bookings_router
from app.api.routes_checkout import router as checkout_router
from app.api.routes_health import router as health_router
from app.api.routes_metrics import router as metrics_router
from app.api.routes_payments import router as payments_router
from app.api.routes_promos import router as promos_router
from app.api.routes_venues import router as venues_router
from app.domain.errors import DomainError, PaymentGatewayUnavailable, SlotConflict
from app.infra.db import get_session_factory
from app.infra.logging import configure_logging
from app.infra.metrics import configure_metrics
from app.infra.slot_locks import create_slot_locks
from app.settings import settings

PROBLEM_TYPE_VALIDATION = "https://example.com/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://example.com/problems/domain-error"
PROBLEM_TYPE_SERVER = "https://example.com/problems/server-error"

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("app.request")

NO_STORE_PREFIXES = ("/v1/checkout", "/v1/payments", "/v1/venues", "/v1/bookings")
RETRYABLE_ERRORS = (SlotConflict, PaymentGatewayUnavailable)
VERIFY_PATH_PREFIX = "/v1/bookings/verify/"


def _loggable_path(path: str) -> str:
    if path.startswith(VERIFY_PATH_PREFIX):
        return f"{VERIFY_PATH_PREFIX}[REDACTED]"
    return path


def problem_details(
    request: Request,
    status: int,
    title: str,
    detail: str,
    errors: list[dict[str, str]] | None = None,
    type_: str = "about:blank",
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content = {
        "type": type_,
        "title": title,
        "status": status,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
        "errors": errors or [],
    }
    return JSONResponse(status_code=status, content=content, headers=headers)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        response = await call_next(request)
        if response.status_code >= 500:
            metrics_client = getattr(request.app.state, "metrics", None)
            if metrics_client is not None:
                metrics_client.record_http_5xx(request.method, _loggable_path(request.url.path))
        request_logger.info(
            "request",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "method": request.method,
                "path": _loggable_path(request.url.path),
                "status_code": response.status_code,
                "latency_ms": int((time.perf_counter() - started) * 1000),
                "extra": {"account_id": request.headers.get("X-Account-Id")},
            },
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if request.url.path.startswith(NO_STORE_PREFIXES):
            # checkout URLs and hold expiries must never be served from a cache
            response.headers.setdefault("Cache-Control", "no-store")
        return response


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.strict_cors:
        return []
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def _validate_prod_config(app_settings) -> None:
    if app_settings.app_env == "dev" or getattr(app_settings, "testing", False) or os.getenv("PYTEST_CURRENT_TEST") or "pytest" in sys.argv[0]:
        return

    errors: list[str] = []
    if not (app_settings.admin_basic_username and app_settings.admin_basic_password):
        errors.append("ADMIN_BASIC_USERNAME and ADMIN_BASIC_PASSWORD are required outside dev")
    if not app_settings.payment_callback_secret and not app_settings.stripe_webhook_secret:
        errors.append("PAYMENT_CALLBACK_SECRET or STRIPE_WEBHOOK_SECRET is required outside dev")
    if not getattr(app_settings, "redis_url", None):
        # in-process slot locks do not exclude across workers
        errors.append("REDIS_URL is required outside dev")

    if errors:
        for error in errors:
            logger.error("startup_config_error", extra={"extra": {"detail": error}})
        raise RuntimeError("Invalid production configuration; see logs for details")


def create_app(app_settings) -> FastAPI:
    configure_logging()
    _validate_prod_config(app_settings)
    app = FastAPI(title="Arena Booking Engine", version="1.0.0")

    slot_locks = create_slot_locks(app_settings)
    app.state.app_settings = app_settings
    app.state.db_session_factory = get_session_factory()
    app.state.slot_locks = slot_locks
    app.state.metrics = configure_metrics(app_settings.metrics_enabled)
    app.state.stripe_client = None
    app.state.payment_gateway = None
    app.state.clock = None

    @app.on_event("shutdown")
    async def shutdown_slot_locks() -> None:
        await slot_locks.close()

    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        logger.info(
            "domain_error",
            extra={"extra": {"path": request.url.path, "error": type(exc).__name__, "status": exc.status_code}},
        )
        headers = {"Retry-After": "1"} if isinstance(exc, RETRYABLE_ERRORS) else None
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
            headers=headers,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        )
        request.app.state.metrics.record_http_5xx(request.method, request.url.path)
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(checkout_router)
    app.include_router(bookings_router)
    app.include_router(venues_router)
    app.include_router(payments_router)
    app.include_router(promos_router)
    return app


app = create_app(settings)

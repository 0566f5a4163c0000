import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from match_gateway_server import database
from match_gateway_server.admin_api import router as admin_router
from match_gateway_server.auth import AuthenticationGate
from match_gateway_server.config import Settings, settings
from match_gateway_server.credential_store import CredentialStore
from match_gateway_server.db_models import utcnow
from match_gateway_server.downstream import ProfileServiceClient
from match_gateway_server.errors import GatewayError
from match_gateway_server.health import metrics, router as health_router
from match_gateway_server.key_manager import KeyLifecycleManager
from match_gateway_server.logging_config import (
    get_logger,
    log_exception,
    log_request_end,
    log_request_start,
    setup_logging,
)
from match_gateway_server.quota import QuotaEnforcer
from match_gateway_server.service_api import router as service_router
from match_gateway_server.usage_ledger import LedgerSweeper, SQLUsageLedger, UsageLedger, build_usage_ledger

setup_logging(
    log_level=settings.log_level,
    log_format=settings.log_format,
    log_file=settings.log_file_path if settings.log_file_enabled else None,
    log_max_bytes=settings.log_file_max_size,
    log_backup_count=settings.log_file_backup_count,
)

# Context variable for request ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def _client_id(request: Request) -> Optional[str]:
    identity = getattr(request.state, "api_client", None)
    return identity.client_id if identity else None


def create_app(
    config: Settings = settings,
    engine: Optional[Engine] = None,
    usage_ledger: Optional[UsageLedger] = None,
    profile_service: Optional[ProfileServiceClient] = None,
    clock: Callable[[], datetime] = utcnow,
    run_sweeper: bool = True,
) -> FastAPI:
    """
    Assemble the gateway application.

    Args:
        config: Settings to build from
        engine: Database engine (defaults to the module engine)
        usage_ledger: Ledger backend (defaults to USAGE_LEDGER_BACKEND)
        profile_service: Downstream client (defaults to DOWNSTREAM_URL)
        clock: Source of "now" for standing checks and quota windows
        run_sweeper: Start the background ledger sweep on startup
    """
    engine = engine or database.engine
    session_factory = database.build_session_factory(engine)

    store = CredentialStore(session_factory, salt=config.api_key_salt, key_prefix=config.api_key_prefix)
    ledger = usage_ledger or build_usage_ledger(config, session_factory)
    profile_service = profile_service or ProfileServiceClient(config.downstream_url, timeout=config.downstream_timeout)
    sweeper = LedgerSweeper(
        ledger,
        window_seconds=config.rate_limit_window_seconds,
        interval_seconds=config.ledger_sweep_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = get_logger("startup")
        database.create_tables(engine)
        if run_sweeper and isinstance(ledger, SQLUsageLedger):
            sweeper.start()
        logger.info("gateway_started", ledger_backend=config.usage_ledger_backend, environment=config.environment)
        yield
        await sweeper.stop()
        await profile_service.aclose()

    app = FastAPI(
        title="Profile Match Gateway",
        description="API key authentication and per-client quota enforcement for the profile-matching service.",
        version=config.app_version,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.engine = engine
    app.state.credential_store = store
    app.state.usage_ledger = ledger
    app.state.ledger_sweeper = sweeper
    app.state.auth_gate = AuthenticationGate(store, trust_proxy_headers=config.trust_proxy_headers, clock=clock)
    app.state.quota_enforcer = QuotaEnforcer(
        ledger,
        window_seconds=config.rate_limit_window_seconds,
        retry_after=config.rate_limit_retry_after,
        clock=clock,
    )
    app.state.key_manager = KeyLifecycleManager(store, default_rate_limit=config.default_rate_limit, clock=clock)
    app.state.profile_service = profile_service

    if config.cors_enabled:
        from fastapi.middleware.cors import CORSMiddleware

        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=config.cors_allow_credentials,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-Admin-Password"],
            expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
        )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers to all responses"""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Log all incoming requests and responses with timing"""
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        metrics.increment_requests()

        client_ip = request.client.host if request.client else "unknown"
        start_time = time.time()
        log_request_start(
            method=request.method,
            path=request.url.path,
            request_id=request_id,
            client_ip=client_ip,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            log_exception(
                e,
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "request_id": request_id,
                    "duration_ms": (time.time() - start_time) * 1000,
                }
            )
            raise

        log_request_end(
            method=request.method,
            path=request.url.path,
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=(time.time() - start_time) * 1000,
            client_id=_client_id(request),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        """Render domain errors as {success: false, error, code}"""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Request validation failed",
                "code": "VALIDATION_ERROR",
                "details": details,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions"""
        request_id = request_id_var.get("")
        log_exception(
            exc,
            context={
                "method": request.method,
                "path": request.url.path,
                "request_id": request_id,
            }
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "request_id": request_id,
            },
            headers={"X-Request-ID": request_id},
        )

    app.include_router(health_router)
    app.include_router(service_router)
    app.include_router(admin_router)

    @app.get("/")
    async def read_root():
        return {
            "success": True,
            "message": "Profile Match Gateway is running.",
            "version": config.app_version,
            "endpoints": {
                "service": "/api/v1",
                "admin": "/api/admin",
                "health": "/health",
            },
        }

    @app.get("/health")
    async def health():
        return {
            "success": True,
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "uptime": round(metrics.get_uptime_seconds(), 2),
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the gateway with uvicorn"""
    import uvicorn

    uvicorn.run(
        "match_gateway_server.main_api:app",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.reload,
    )

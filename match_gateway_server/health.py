"""
Health check and monitoring endpoints for production readiness.
"""
import asyncio
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from match_gateway_server.database import ping
from match_gateway_server.logging_config import get_logger

router = APIRouter(prefix="/api/v1", tags=["health"])


class GatewayMetrics:
    """In-memory gateway counters, safe to update from worker threads"""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        with self._lock:
            self.start_time = time.time()
            self.request_count = 0
            self.authenticated_count = 0
            self.auth_failures: Dict[str, int] = defaultdict(int)
            self.quota_rejections = 0
            self.ledger_failures = 0

    def increment_requests(self):
        with self._lock:
            self.request_count += 1

    def increment_authenticated(self):
        with self._lock:
            self.authenticated_count += 1

    def increment_auth_failure(self, code: str):
        with self._lock:
            self.auth_failures[code] += 1

    def increment_quota_rejection(self):
        with self._lock:
            self.quota_rejections += 1

    def increment_ledger_failure(self):
        with self._lock:
            self.ledger_failures += 1

    def get_uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        uptime = self.get_uptime_seconds()
        with self._lock:
            return {
                "uptime_seconds": round(uptime, 2),
                "uptime_human": self._format_uptime(uptime),
                "requests": {
                    "total": self.request_count,
                    "rate_per_second": round(self.request_count / uptime, 2) if uptime > 0 else 0,
                },
                "auth": {
                    "authenticated": self.authenticated_count,
                    "failures": dict(self.auth_failures),
                },
                "quota": {
                    "rejections": self.quota_rejections,
                    "ledger_failures": self.ledger_failures,
                },
            }

    @staticmethod
    def _format_uptime(seconds: float) -> str:
        """Format uptime in human-readable format"""
        days = int(seconds // 86400)
        hours = int((seconds % 86400) // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if days > 0:
            return f"{days}d {hours}h {minutes}m {secs}s"
        elif hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"


# Global metrics instance
metrics = GatewayMetrics()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def check_database(request: Request) -> Dict[str, Any]:
    """Check credential store connectivity"""
    try:
        start = time.time()
        await asyncio.to_thread(ping, request.app.state.engine)
        duration_ms = (time.time() - start) * 1000
        return {
            "status": "healthy",
            "response_time_ms": round(duration_ms, 2),
        }
    except Exception as e:
        get_logger("health").error("database_health_check_failed", error_type=type(e).__name__)
        return {
            "status": "unhealthy",
            "error": type(e).__name__,
        }


async def check_usage_ledger(request: Request) -> Dict[str, Any]:
    """Check usage ledger connectivity (degraded only: quota fails open)"""
    try:
        start = time.time()
        await asyncio.to_thread(request.app.state.usage_ledger.ping)
        duration_ms = (time.time() - start) * 1000
        return {
            "status": "healthy",
            "backend": request.app.state.config.usage_ledger_backend,
            "response_time_ms": round(duration_ms, 2),
        }
    except Exception as e:
        get_logger("health").warning("usage_ledger_health_check_failed", error_type=type(e).__name__)
        return {
            "status": "degraded",
            "backend": request.app.state.config.usage_ledger_backend,
            "error": type(e).__name__,
        }


@router.get("/health")
async def health_check(request: Request):
    """
    Basic health check endpoint.
    Returns 200 if service is running. No API key required.
    """
    return {
        "success": True,
        "status": "operational",
        "timestamp": _timestamp(),
        "version": request.app.state.config.app_version,
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check endpoint.
    Ready only while the credential store answers; a ledger outage degrades
    quota accounting but does not block traffic.
    """
    db_check, ledger_check = await asyncio.gather(
        check_database(request),
        check_usage_ledger(request),
    )
    checks = {"database": db_check, "usage_ledger": ledger_check}

    is_ready = db_check.get("status") == "healthy"
    response = {
        "ready": is_ready,
        "timestamp": _timestamp(),
        "checks": checks,
    }

    if not is_ready:
        get_logger("health").warning("readiness_check_failed", checks=checks)

    return JSONResponse(content=response, status_code=200 if is_ready else 503)


@router.get("/metrics")
async def get_metrics():
    """Gateway counters: uptime, authentications, auth failures by code, quota rejections"""
    return {
        "timestamp": _timestamp(),
        "metrics": metrics.to_dict(),
    }


@router.get("/version")
async def get_version(request: Request):
    config = request.app.state.config
    return {
        "service": config.app_name,
        "version": config.app_version,
        "timestamp": _timestamp(),
        "environment": config.environment,
        "features": {
            "usage_ledger_backend": config.usage_ledger_backend,
            "downstream_configured": bool(config.downstream_url),
            "trust_proxy_headers": config.trust_proxy_headers,
        },
    }


__all__ = ["router", "metrics"]

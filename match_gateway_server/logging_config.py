"""
Structured logging for the gateway.

Everything goes through structlog on top of stdlib logging. Key material never
reaches a logger: auth events carry the failure code, the client id once it is
known and the requester address, and ``redact_secrets`` masks any field whose
name suggests a credential in case one slips through.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor

KEY_PREVIEW_LENGTH = 8
KEY_MASK = "••••••••"

SENSITIVE_FIELDS = frozenset({
    "api_key",
    "key",
    "raw_key",
    "authorization",
    "x_api_key",
    "admin_password",
    "password",
    "salt",
})

# Per-request lines from these libraries duplicate request_start/request_end
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to all log entries."""
    event_dict["app"] = "match-gateway"
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for name in SENSITIVE_FIELDS.intersection(event_dict):
        event_dict[name] = KEY_MASK
    return event_dict


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    log_max_bytes: int = 10485760,  # 10MB
    log_backup_count: int = 5,
) -> None:
    """
    Configure structured logging with optional file rotation.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ('json' or 'console')
        log_file: Rotating log file path, None for stdout only
        log_max_bytes: Max log file size before rotation
        log_backup_count: Number of rotated files to keep
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        redact_secrets,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def mask_api_key(key_preview: Optional[str]) -> str:
    """Admin-facing rendering of a key from its stored tail."""
    if not key_preview:
        return KEY_MASK
    return f"{KEY_MASK}{key_preview[-KEY_PREVIEW_LENGTH:]}"


def log_request_start(method: str, path: str, request_id: str, client_ip: str = None, **kwargs) -> None:
    get_logger("api").info(
        "request_start",
        method=method,
        path=path,
        request_id=request_id,
        client_ip=client_ip,
        **kwargs
    )


def log_request_end(
    method: str,
    path: str,
    request_id: str,
    status_code: int,
    duration_ms: float,
    client_id: str = None,
    **kwargs
) -> None:
    """
    Log a completed request.

    Args:
        client_id: Tenant id when the request authenticated, else None
    """
    logger = get_logger("api")
    log = logger.warning if status_code >= 500 else logger.info
    log(
        "request_end",
        method=method,
        path=path,
        request_id=request_id,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
        client_id=client_id,
        **kwargs
    )


def log_auth_failure(
    code: str,
    client_ip: str = None,
    path: str = None,
    client_id: str = None,
    **kwargs
) -> None:
    """
    Log a rejected authentication attempt.

    Args:
        code: Failure code (e.g. INVALID_API_KEY)
        client_ip: Requester address
        path: Request path
        client_id: Tenant id, when the key resolved to one
    """
    get_logger("auth").warning(
        "auth_failed",
        code=code,
        client_ip=client_ip,
        path=path,
        client_id=client_id,
        **kwargs
    )


def log_rate_limit_exceeded(client_id: str, limit_value: int, current_count: int, **kwargs) -> None:
    """Log a request rejected because the hourly window is full."""
    get_logger("quota").warning(
        "rate_limit_exceeded",
        client_id=client_id,
        limit_value=limit_value,
        current_count=current_count,
        **kwargs
    )


def log_ledger_unavailable(client_id: str, error: Exception, **kwargs) -> None:
    """Log a usage ledger outage; the request is admitted unrecorded."""
    get_logger("quota").warning(
        "usage_ledger_unavailable",
        client_id=client_id,
        error_type=type(error).__name__,
        **kwargs
    )


def log_key_event(action: str, client_id: str, **kwargs) -> None:
    """
    Log an administrative key lifecycle event.

    Args:
        action: created / updated / regenerated / deactivated / deleted
        client_id: Tenant id
    """
    get_logger("key_manager").info("api_key_" + action, client_id=client_id, **kwargs)


def log_exception(exception: Exception, context: Dict[str, Any] = None, **kwargs) -> None:
    """Log an unexpected exception with its traceback."""
    get_logger("exception").error(
        "exception_occurred",
        exception_type=type(exception).__name__,
        exc_info=exception,
        **(context or {}),
        **kwargs
    )

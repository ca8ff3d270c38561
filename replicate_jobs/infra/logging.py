"""
Structured logging for the job client.

Every log call in the package has the form
``logger.info("event_name", extra={...})``. The processor chain lifts the
``extra`` mapping into the top-level event, tags it with the current
request id and client version, then scrubs credentials before rendering.

Logging is left unconfigured until the application calls
``configure_logging`` (or ``configure_from_settings``); a library should
not install handlers on import.
"""
from __future__ import annotations

import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import structlog

from replicate_jobs import __version__

CLIENT_NAME = "replicate-jobs"

REDACTED = "[REDACTED]"

# Correlates all attempts of one logical fetch
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Substrings of keys whose values never reach the output
SENSITIVE_KEYS = frozenset({
    "api_token",
    "api_key",
    "token",
    "authorization",
    "password",
    "secret",
    "credential",
})

# "Bearer <token>" embedded in free text, e.g. an exception message
BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[\w.~+/=-]+")

NOISY_LOGGERS = ("httpx", "httpcore")


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind a request id to the current task context.

    Args:
        request_id: Id to bind; a fresh ``req_<hex>`` id when omitted

    Returns:
        The bound id
    """
    if request_id is None:
        request_id = f"req_{uuid.uuid4().hex[:12]}"
    request_id_var.set(request_id)
    return request_id


def clear_request_id() -> None:
    request_id_var.set(None)


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return BEARER_PATTERN.sub(f"Bearer {REDACTED}", value)
    if isinstance(value, Mapping):
        return sanitize_log_context(value)
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


def sanitize_log_context(context: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Redact credentials from a log event.

    Values under a sensitive key are replaced outright. Other values are
    walked recursively and any inline bearer token is masked.

    Args:
        context: Event mapping, possibly nested

    Returns:
        A redacted copy
    """
    sanitized: Dict[str, Any] = {}
    for key, value in context.items():
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = REDACTED
        else:
            sanitized[key] = _scrub(value)
    return sanitized


# =============================================================================
# Processors
# =============================================================================


def flatten_extra(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Lift ``extra={...}`` fields to the top level; explicit keys win."""
    extra = event_dict.pop("extra", None)
    if isinstance(extra, Mapping):
        for key, value in extra.items():
            event_dict.setdefault(key, value)
    return event_dict


def add_request_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = get_request_id()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_client_info(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict["client"] = CLIENT_NAME
    event_dict["version"] = __version__
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def sanitize_sensitive_data(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any],
) -> Dict[str, Any]:
    return sanitize_log_context(event_dict)


def build_processors(json_format: bool) -> List[Any]:
    """Processor chain used by configure_logging, renderer last."""
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        flatten_extra,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_client_info,
        add_request_id,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        sanitize_sensitive_data,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


# =============================================================================
# Configuration
# =============================================================================


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    use_structured_logging: bool = True,
) -> None:
    """
    Configure logging for an application using the client.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines when True, human-readable console otherwise
        use_structured_logging: False routes everything through plain
            stdlib logging with a line format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    if use_structured_logging:
        structlog.configure(
            processors=build_processors(json_format),
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        line_format = "%(message)s"
    else:
        line_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(format=line_format, stream=sys.stdout, level=level)

    # The client logs each request itself
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def configure_from_settings() -> None:
    """Configure from LOG_LEVEL, LOG_FORMAT and USE_STRUCTURED_LOGGING."""
    from replicate_jobs.infra.settings import get_settings

    settings = get_settings()
    if settings.LOG_FORMAT == "auto":
        json_format = not sys.stdout.isatty()
    else:
        json_format = settings.LOG_FORMAT == "json"

    configure_logging(
        log_level=settings.LOG_LEVEL,
        json_format=json_format,
        use_structured_logging=settings.USE_STRUCTURED_LOGGING,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """
    Bind fields to every log event emitted inside the block.

    Nesting restores the outer values on exit, so an inner
    ``LogContext(job_id=...)`` does not clobber an outer one.

    Usage:
        with LogContext(job_id=job.id):
            logger.info("job_polled", extra={"status": job.status.value})
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._tokens: Optional[Mapping[str, Any]] = None

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._tokens is not None:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = None

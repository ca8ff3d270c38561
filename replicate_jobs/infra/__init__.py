"""
Infrastructure layer for configuration and observability.

Provides:
- Structured logging with request correlation
- Environment-driven settings
"""
from replicate_jobs.infra.logging import (
    configure_logging,
    configure_from_settings,
    get_logger,
    get_request_id,
    set_request_id,
    clear_request_id,
    sanitize_log_context,
    LogContext,
    SENSITIVE_KEYS,
)
from replicate_jobs.infra.settings import (
    Settings,
    get_settings,
    clear_settings_cache,
)

__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "get_request_id",
    "set_request_id",
    "clear_request_id",
    "sanitize_log_context",
    "LogContext",
    "SENSITIVE_KEYS",
    "Settings",
    "get_settings",
    "clear_settings_cache",
]

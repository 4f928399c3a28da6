from __future__ import annotations

import logging
import os
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Mapping, Optional

import structlog

# Per-request id, taken from X-Request-ID by the HTTP middleware
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Keys whose values never reach the log in full: link passwords and their
# hashes, SMTP and AI service credentials, customer contact details.
SECRET_KEYS = frozenset({
    "password",
    "password_hash",
    "passwordhash",
    "smtp_password",
    "smtp_user",
    "api_key",
    "ai_service_api_key",
    "authorization",
    "secret",
})
CONTACT_KEYS = frozenset({"recipient", "to", "email", "phone", "customer_email"})

_MAX_REDACT_DEPTH = 6


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set the request's correlation id, generating one when the caller sent none."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


@contextmanager
def execution_context(**ids: Optional[str]) -> Iterator[None]:
    """Attach workflow/execution ids to every log line emitted inside the block."""
    bound = {k: v for k, v in ids.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _mask_contact(value: str) -> str:
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}***@{domain}"
    return value[:2] + "***" if len(value) > 4 else "***"


def redact(value: Any, depth: int = 0) -> Any:
    """Mask secrets and contact details inside node payloads and settings dumps."""
    if depth > _MAX_REDACT_DEPTH:
        return value
    if isinstance(value, Mapping):
        cleaned: Dict[str, Any] = {}
        for key, item in value.items():
            lower_key = str(key).lower()
            if lower_key in SECRET_KEYS and item is not None:
                cleaned[key] = "[redacted]"
            elif lower_key in CONTACT_KEYS and isinstance(item, str):
                cleaned[key] = _mask_contact(item)
            else:
                cleaned[key] = redact(item, depth + 1)
        return cleaned
    if isinstance(value, list):
        return [redact(item, depth + 1) for item in value]
    return value


def _redact_event(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event = event_dict.pop("event", None)
    cleaned = redact(event_dict)
    if event is not None:
        cleaned["event"] = event
    return cleaned


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_TRUTHY = {"1", "true", "yes", "on"}

_configure_structlog(
    log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY,
    development_mode=os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_execution_trace(
    run_id: str, entries: list, logger: Optional[Any] = None
) -> None:
    """Log the ordered node log of one execution run."""
    log = logger or get_logger("automation")
    failed = [e["node_id"] for e in entries if e.get("status") == "failed"]
    log.info("execution_trace", run_id=run_id, entries=entries, failed_nodes=failed)


# What internal failures tend to leak: SMTP server replies, store and AI
# endpoint addresses, file paths, credentials and stack traces.
_SENSITIVE_ERROR_PATTERNS = [
    r"\b[45]\d\d[ -]\d\.\d\.\d+\b.*",
    r"(?i)smtp[^\s]*\s*(auth|login)[^\n]*",
    r"(?i)https?://[^\s'\"]+",
    r"(?i)connection\s+.*\s+(failed|refused|timeout|timed out)",
    r"(?i)/(?:home|var|etc|usr|opt|tmp|srv)/[^\s]+",
    r"(?i)[a-z]:\\[^\s]+",
    r"(?i)(password|secret|token|api.?key)\s*[:=]\s*[^\s,]+",
    r"(?i)bearer\s+[^\s,]+",
    r"(?i)traceback\s*\(most recent call last\)",
]

_SENSITIVE_PATTERNS_COMPILED = [re.compile(p) for p in _SENSITIVE_ERROR_PATTERNS]


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Strip server replies, URLs, paths and credentials from an error message.

    Used for internal failures that are returned to API callers and recorded
    on failed nodes.
    """
    if not error or not isinstance(error, str):
        return "An error occurred"

    result = error
    for pattern in _SENSITIVE_PATTERNS_COMPILED:
        result = pattern.sub(replacement, result)

    if len(result) > 500:
        result = result[:497] + "..."
    return result

from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Request id and tab id of the request being served
_request_context: ContextVar[Dict[str, str]] = ContextVar("request_context", default={})

_TAB_IN_PATH = re.compile(r"/tab/([A-Za-z0-9_-]{1,64})(?:/|$)")

_CREDENTIAL_KEYS = ("password", "secret", "token", "csrf", "cookie", "authorization")
_SESSION_KEYS = ("session_id", "sid")
_TRUTHY = {"1", "true", "yes", "on"}


def tab_id_from_path(path: str) -> Optional[str]:
    match = _TAB_IN_PATH.search(path)
    return match.group(1) if match else None


def bind_request_context(request_id: Optional[str] = None, path: str = "") -> str:
    """Bind a request id (generated when absent) and the path's tab id to this context."""
    rid = request_id or str(uuid.uuid4())
    context = {"correlation_id": rid}
    tab_id = tab_id_from_path(path)
    if tab_id:
        context["tab_id"] = tab_id
    _request_context.set(context)
    return rid


def get_correlation_id() -> Optional[str]:
    return _request_context.get().get("correlation_id")


def session_fingerprint(session_id: Optional[str]) -> Optional[str]:
    """Short, non-reversible tag for a session id that is safe to log."""
    if not session_id:
        return None
    return hashlib.sha256(session_id.encode()).hexdigest()[:12]


def _mask_email(value: str) -> str:
    local, _, domain = value.partition("@")
    if not domain:
        return "***"
    return f"{local[:2]}***@{domain}"


def _merge_request_context(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in _request_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def _scrub(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Drop credentials, fingerprint raw session ids and mask email addresses."""
    for key, value in list(event_dict.items()):
        if not isinstance(value, str) or key == "event":
            continue
        lowered = key.lower()
        if any(lowered.endswith(s) for s in _SESSION_KEYS):
            event_dict[key] = session_fingerprint(value)
        elif any(c in lowered for c in _CREDENTIAL_KEYS):
            event_dict[key] = "[redacted]"
        elif "email" in lowered:
            event_dict[key] = _mask_email(value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog for the process.

    JSON lines go to stdout unless ``development_mode`` or ``json_output``
    asks for the coloured console renderer.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _merge_request_context,
        _scrub,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY,
    development_mode=os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

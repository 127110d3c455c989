"""structlog setup for umiauth.

Every log line is a snake_case event with keyword fields. Credentials and
emails are masked before rendering, and work started by the sweeper or the
operator CLI is tagged with a ``correlation_id`` so its lines can be
grouped.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, List, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_PII_KEYS = frozenset({"password", "secret", "token", "authorization", "email"})
# Family ids and token-type fields are identifiers, not credentials
_PII_ALLOWED_KEYS = frozenset({"token_family", "token_type", "families", "family"})


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def correlation_scope(prefix: str, correlation_id: Optional[str] = None) -> Iterator[str]:
    """Tag log lines emitted inside the block with one correlation id.

    The previous id is restored on exit, so scopes nest.
    """
    cid = correlation_id or f"{prefix}-{uuid.uuid4().hex[:12]}"
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = correlation_id_var.get()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def redact_value(value: str) -> str:
    """Mask a credential-like string, keeping two chars at each end."""
    if len(value) <= 4:
        return "***"
    return value[:2] + "***" + value[-2:]


def _redact_pii(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor that masks bearer tokens, secrets and emails."""
    for key, value in list(event_dict.items()):
        lower_key = key.lower()
        if lower_key in _PII_ALLOWED_KEYS or not isinstance(value, str):
            continue
        if any(pii in lower_key for pii in _PII_KEYS):
            event_dict[key] = redact_value(value)
    return event_dict


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def build_processors(json_output: bool) -> List[Any]:
    """Processor chain: context, redaction, then a JSON or console renderer."""
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """(Re)configure structlog; unset arguments come from LOG_LEVEL / LOG_JSON."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", True) and not _env_flag("LOG_DEV_MODE", False)
    structlog.configure(
        processors=build_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

"""
JSON logging for the portal, plus the audit trail of sourcing actions.

Secrets are scrubbed from messages and from audit details before they are
written.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from procurement.core.config import settings

_REDACTED = "***REDACTED***"

_SECRET_IN_TEXT = re.compile(
    r'(password|secret|token|api_key|authorization|credential)'
    r'[\"\']?\s*[:=]\s*(bearer\s+)?[\"\']?[^\s,;\"\'}{]+',
    re.IGNORECASE,
)

_SECRET_KEYS = frozenset({
    "password", "secret", "secret_key", "api_key", "token",
    "access_token", "authorization", "credential",
})

# Record attributes copied into the JSON entry when present
CONTEXT_FIELDS = (
    "user_id", "action", "entity_type", "entity_id",
    "rfx_id", "request_id", "po_number", "details",
)


def _scrub_value(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: _REDACTED if str(k).lower() in _SECRET_KEYS else _scrub_value(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [_scrub_value(item) for item in obj]
    return obj


def _scrub_message(message: str) -> str:
    return _SECRET_IN_TEXT.sub(lambda m: f"{m.group(1)}={_REDACTED}", message)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": settings.APP_NAME,
            "logger": record.name,
            "message": _scrub_message(record.getMessage()),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = _scrub_value(value)
        if record.exc_info:
            entry["exception"] = _scrub_message(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging(level: Optional[str] = None) -> None:
    """Install the JSON handler on the root logger (once)."""
    root = logging.getLogger()
    if any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        return

    if level is None:
        level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """Writes one ``audit`` record per sourcing mutation (supplier, event, bid, award)."""

    def __init__(self, name: str = "procurement.audit"):
        self.logger = get_logger(name)

    def log(
        self,
        action: str,
        user_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        extra = {
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": _scrub_value(details) if details else None,
        }
        # Promote the identifiers people search the audit trail by
        for key in ("rfx_id", "request_id", "po_number"):
            if details and details.get(key) is not None:
                extra[key] = details[key]

        target = f" {entity_type}:{entity_id}" if entity_type and entity_id else ""
        self.logger.info(f"audit {action}{target}", extra=extra)


audit_logger = AuditLogger()

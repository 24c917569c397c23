import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.context import get_actor_id, get_request_id
from app.core.settings import settings

AUDIT_LOGGER_NAME = "app.audit"

# Domain identifiers callers pass through ``extra=``
CONTEXT_FIELDS = ("loan_id", "stage_id", "document_id", "storage_key", "action_type")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"


class RequestContextFilter(logging.Filter):
    """Stamp every record with the current request id and acting principal."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.actor_id = get_actor_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``stream`` separates audit from transactional logs."""

    def __init__(self, stream_label: str = "transactional") -> None:
        super().__init__()
        self.stream_label = stream_label

    def _context(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            field: getattr(record, field)
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        }

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
            "request_id": getattr(record, "request_id", "-"),
            "actor_id": getattr(record, "actor_id", "-"),
        }
        payload.update(self._context(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _formatters(log_format: str) -> dict[str, dict[str, Any]]:
    if log_format == "text":
        text = {"format": TEXT_FORMAT}
        return {"transactional": text, "audit": text}
    return {
        "transactional": {"()": JsonFormatter, "stream_label": "transactional"},
        "audit": {"()": JsonFormatter, "stream_label": "audit"},
    }


def _handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def build_logging_config(level: str, log_format: str = "json") -> dict[str, Any]:
    level = level.upper()
    app_logger = {"handlers": ["default"], "level": level, "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": _formatters(log_format),
        "handlers": {
            "default": _handler("transactional", level),
            "audit": _handler("audit", level),
        },
        "loggers": {
            "": app_logger,
            AUDIT_LOGGER_NAME: {"handlers": ["audit"], "level": level, "propagate": False},
            "uvicorn": app_logger,
            "uvicorn.error": app_logger,
            "uvicorn.access": app_logger,
            "sqlalchemy.engine": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    logging.config.dictConfig(build_logging_config(level or settings.log_level, settings.log_format))
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s storage_provider=%s",
        settings.environment,
        settings.storage_provider,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)

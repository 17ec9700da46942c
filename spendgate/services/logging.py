"""
Structured logging for Spendgate.

Every module logs through ``logging.getLogger(__name__)``; records from
``spendgate.*`` reach the package logger configured here. Set
``USE_JSON_LOGS=true`` for one JSON object per line.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
USE_JSON_LOGS = os.getenv("USE_JSON_LOGS", "false").lower() == "true"

logger = logging.getLogger("spendgate")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with any ``extra_fields`` merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(getattr(record, "extra_fields", {}))
        return json.dumps(payload, default=str)


def _build_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if USE_JSON_LOGS:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    return handler


logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
logger.handlers.clear()
logger.addHandler(_build_handler())
logger.propagate = False


def _emit(level: int, message: str, extra_fields: Dict[str, Any]) -> None:
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(logger.name, level, "", 0, message, (), None)
    record.extra_fields = extra_fields
    logger.handle(record)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_id: Optional[str] = None,
    **kwargs
):
    """Log one HTTP request."""
    fields = {
        "type": "http_request",
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if client_id:
        fields["client_id"] = client_id
    fields.update(kwargs)
    _emit(logging.INFO, f"{method} {path} {status_code}", fields)


def log_report_build(kind: str, projects: int, thresholds: int, duration_ms: float):
    """Log a finished approval matrix (``kind`` is "built" or "preview")."""
    _emit(
        logging.INFO,
        f"Approval report {kind}: {projects} projects x {thresholds} thresholds",
        {
            "type": "approval_report",
            "kind": kind,
            "projects": projects,
            "thresholds": thresholds,
            "duration_ms": round(duration_ms, 2),
        },
    )


def log_rule_change(action: str, rule_id: str, project_id: Optional[str] = None, **kwargs):
    """Log a write to either rule tier."""
    scope = f"project {project_id}" if project_id else "global"
    fields = {"type": "approval_rule", "action": action, "rule_id": rule_id, "scope": scope}
    fields.update(kwargs)
    _emit(logging.INFO, f"Approval rule {action}: {rule_id} ({scope})", fields)


def log_error(
    error_type: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    exception: Optional[Exception] = None
):
    """Log an error with context; pass ``exception`` to include its traceback."""
    fields = {"type": "error", "error_type": error_type}
    if context:
        fields.update(context)

    if exception is not None:
        logger.error(message, exc_info=exception, extra={"extra_fields": fields})
    else:
        _emit(logging.ERROR, message, fields)

from __future__ import annotations

"""Logging helpers: planner context fields, bounded payload summaries, config loading."""

from typing import Any, Dict, Iterable, Optional
from enum import Enum
from pathlib import Path
import logging
import logging.config
import json
from datetime import datetime, timezone
import os
import contextvars

import numpy as np

from src.core.resolve import PROJECT_ROOT


# Fields stamped on every record; "-" means "outside any session/phrase/worker".
CONTEXT_FIELDS = ("session_id", "phrase_id", "worker_id")
_EMPTY = "-"
_CONTEXT: Dict[str, contextvars.ContextVar] = {
    name: contextvars.ContextVar(f"planner_{name}", default=_EMPTY) for name in CONTEXT_FIELDS
}

DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d:%(funcName)s "
    + " ".join(f"{name}=%({name})s" for name in CONTEXT_FIELDS)
    + " %(message)s"
)

_RECORD_KEYS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def set_log_context(
    *, session_id: Optional[str] = None, phrase_id: Optional[str] = None, worker_id: Optional[str] = None
) -> None:
    """Update the given context fields; omitted fields keep their value."""
    updates = {"session_id": session_id, "phrase_id": phrase_id, "worker_id": worker_id}
    for name, value in updates.items():
        if value is not None:
            _CONTEXT[name].set(value)


def clear_log_context() -> None:
    for var in _CONTEXT.values():
        var.set(_EMPTY)


def current_log_context() -> Dict[str, str]:
    """Return the active context values, for handing to worker threads."""
    return {name: var.get() for name, var in _CONTEXT.items()}


def summarize_payload(value: Any, *, max_list: int = 20, max_str: int = 200, depth: int = 3) -> Any:
    """Return a size-limited summary of a planner payload for logging.

    Graph records and other objects exposing ``to_dict`` are summarized through
    their dict form; enums log by name; arrays log their shape only.
    """
    if depth <= 0:
        return f"<{type(value).__name__}>"

    def nested(item: Any) -> Any:
        return summarize_payload(item, max_list=max_list, max_str=max_str, depth=depth - 1)

    if isinstance(value, np.ndarray):
        return {"__ndarray__": list(value.shape), "dtype": str(value.dtype)}
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Enum):
        return value.name
    if hasattr(value, "to_dict") and callable(value.to_dict):
        return summarize_payload(value.to_dict(), max_list=max_list, max_str=max_str, depth=depth)
    if isinstance(value, dict):
        items = list(value.items())
        summary: Dict[str, Any] = {str(key): nested(val) for key, val in items[:max_list]}
        if len(items) > max_list:
            summary["__truncated__"] = True
            summary["__len__"] = len(items)
        return summary
    if isinstance(value, (set, frozenset)):
        value = sorted(value, key=repr)
    if isinstance(value, (list, tuple)):
        if len(value) > max_list:
            return {"__len__": len(value), "sample": [nested(item) for item in value[:5]]}
        return [nested(item) for item in value]
    if isinstance(value, str):
        return value if len(value) <= max_str else value[:max_str] + "...(truncated)"
    if isinstance(value, bytes):
        return {"__bytes__": len(value)}
    if isinstance(value, Path):
        return str(value)
    return value


class LoggingContextFilter(logging.Filter):
    """Stamp session/phrase/worker IDs onto each record."""
    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _CONTEXT.items():
            if not hasattr(record, name):
                setattr(record, name, var.get())
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, context fields at the top level."""
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "severity": record.levelname,
            "logger": record.name,
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            payload[name] = getattr(record, name, _EMPTY)
        for key, value in record.__dict__.items():
            if key not in _RECORD_KEYS and key not in payload:
                payload[key] = summarize_payload(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _use_json_logs() -> bool:
    return os.getenv("LOG_FORMAT", "").lower() == "json" or os.getenv("LOG_JSON", "").lower() in {
        "1",
        "true",
        "yes",
    }


def _app_env() -> str:
    return (os.getenv("APP_ENV") or os.getenv("ENV") or "dev").lower()


def is_dev_env() -> bool:
    """Return True when running in development-like environments."""
    return _app_env() in {"dev", "development", "local", "test"}


def build_formatter() -> logging.Formatter:
    if _use_json_logs():
        return JsonFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def attach_context_filter(handler: logging.Handler) -> None:
    if not any(isinstance(f, LoggingContextFilter) for f in handler.filters):
        handler.addFilter(LoggingContextFilter())


def _apply_planner_formatting(logger_names: Iterable[str]) -> None:
    formatter = build_formatter()
    for name in logger_names:
        for handler in logging.getLogger(name).handlers:
            handler.setFormatter(formatter)
            attach_context_filter(handler)


def _logging_config_path() -> Path:
    override = os.getenv("LOG_CONFIG")
    if override:
        path = Path(override)
        return path if path.is_absolute() else PROJECT_ROOT / path
    name = "logging.prod.json" if _app_env() in {"prod", "production"} else "logging.dev.json"
    return PROJECT_ROOT / "config" / name


def configure_logging() -> None:
    """Apply ``config/logging.<env>.json`` (or ``LOG_CONFIG``) for a conductor process.

    ``LOG_FORMAT=json`` switches every configured handler to the JSON formatter
    and ``PLANNER_LOG_LEVEL`` overrides the root level.
    """
    config_path = _logging_config_path()
    if config_path.exists():
        config = json.loads(config_path.read_text(encoding="utf-8"))
        if _use_json_logs() and "json" in config.get("formatters", {}):
            for handler in config.get("handlers", {}).values():
                handler["formatter"] = "json"
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO)
    level_override = os.getenv("PLANNER_LOG_LEVEL")
    if level_override:
        logging.getLogger().setLevel(level_override.upper())
    _apply_planner_formatting(("", "src"))


def get_logger(module_name: str) -> logging.Logger:
    """Return a module logger; in dev it also writes ``<PLANNER_LOG_DIR>/<module>.log``."""
    logger = logging.getLogger(module_name)
    if getattr(logger, "_planner_file_handler", False):
        return logger
    logger.propagate = True
    if not is_dev_env():
        return logger
    log_dir = Path(os.getenv("PLANNER_LOG_DIR") or "logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / f"{module_name.replace('.', '_')}.log", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(build_formatter())
    attach_context_filter(handler)
    logger.addHandler(handler)
    logger._planner_file_handler = True
    return logger

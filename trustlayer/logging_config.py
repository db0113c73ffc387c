import contextvars
import json
import logging
import logging.config
import os
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import yaml

# Context variable for trace ID
trace_id_var = contextvars.ContextVar('trace_id', default=None)

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message', 'trace_id', 'attributes',
    'component',
}


def get_trace_id() -> Optional[str]:
    """Get the current trace ID from context"""
    return trace_id_var.get()


def new_trace_id() -> str:
    return uuid.uuid4().hex[:16]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """JSON formatter with structured fields"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": _utc_now(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "trace_id": getattr(record, "trace_id", None) or get_trace_id(),
            "component": getattr(record, "component", "core"),
        }

        attributes = getattr(record, "attributes", None)
        if attributes:
            log_entry["attributes"] = attributes

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Plain `extra=` fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class MemoryLogHandler(logging.Handler):
    """In-memory log handler with ring buffer for live logs"""

    def __init__(self, max_size: int = 10000):
        super().__init__()
        self.max_size = max_size
        self.logs = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            msg = self.format(record)
            if isinstance(self.formatter, JsonFormatter):
                try:
                    log_entry = json.loads(msg)
                except json.JSONDecodeError:
                    log_entry = {"msg": msg, "timestamp": _utc_now()}
            else:
                log_entry = {
                    "msg": msg,
                    "timestamp": _utc_now(),
                    "level": record.levelname,
                    "logger": record.name,
                }
            with self._lock:
                self.logs.append(log_entry)
        except Exception:
            self.handleError(record)

    def get_logs(self, limit: int = 1000) -> list:
        with self._lock:
            logs = list(self.logs)
        return logs[-limit:] if limit else logs


# Global memory handler instance
memory_handler = MemoryLogHandler()


def _default_config(log_level: str, log_format: str) -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "text": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": log_format,
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "trustlayer": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {"level": log_level, "handlers": ["console"], "propagate": False},
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None,
                  config_path: str = "LOGGING.yaml") -> Dict[str, Any]:
    """Setup logging configuration from YAML file or environment"""
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = log_format or os.getenv("LOG_FORMAT", "json")
    if log_format not in ("json", "text"):
        log_format = "json"

    config = None
    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logging.getLogger("trustlayer").warning("Could not load %s: %s", config_path, e)

    if not config:
        config = _default_config(log_level, log_format)

    for logger_cfg in config.get("loggers", {}).values():
        logger_cfg["level"] = log_level

    logging.config.dictConfig(config)

    formatter = JsonFormatter() if log_format == "json" else logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    memory_handler.setFormatter(formatter)

    app_logger = logging.getLogger("trustlayer")
    app_logger.handlers = [h for h in app_logger.handlers if not isinstance(h, MemoryLogHandler)]
    app_logger.addHandler(memory_handler)

    return config

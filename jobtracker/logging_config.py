import logging
import logging.config
import os
import yaml
import json
import threading
from datetime import datetime, timezone
from collections import deque
from typing import Optional
import contextvars

# Context variable for trace ID
trace_id_var = contextvars.ContextVar('trace_id', default=None)

_RESERVED = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'component',
}


def get_trace_id() -> Optional[str]:
    """Get the current trace ID from context"""
    return trace_id_var.get()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class JsonFormatter(logging.Formatter):
    """JSON formatter with structured fields"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": _utcnow_iso(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "trace_id": get_trace_id(),
            "component": getattr(record, 'component', 'api'),
            "job_id": getattr(record, 'job_id', None),
            "submission_id": getattr(record, 'submission_id', None),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Anything passed through extra=
        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class MemoryLogHandler(logging.Handler):
    """In-memory log handler with ring buffer for the live log tail"""

    def __init__(self, max_size: int = 5000):
        super().__init__()
        self.max_size = max_size
        self.logs = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            msg = self.format(record)
            if isinstance(self.formatter, JsonFormatter):
                log_entry = json.loads(msg)
            else:
                log_entry = {
                    "msg": msg,
                    "timestamp": _utcnow_iso(),
                    "level": record.levelname,
                    "logger": record.name,
                    "component": getattr(record, 'component', 'api'),
                    "job_id": getattr(record, 'job_id', None),
                }
            with self._lock:
                self.logs.append(log_entry)
        except Exception:
            self.handleError(record)

    def get_logs(self, limit: int = 200, component: Optional[str] = None,
                 job_id: Optional[str] = None) -> list:
        """Most recent log entries, optionally narrowed to one component or job"""
        with self._lock:
            logs = list(self.logs)
        if component:
            logs = [entry for entry in logs if entry.get("component") == component]
        if job_id:
            logs = [entry for entry in logs if entry.get("job_id") == job_id]
        return logs[-limit:] if limit else logs


# Global memory handler instance
memory_handler = MemoryLogHandler()


def setup_logging():
    """Setup logging configuration from LOGGING.yaml or environment"""
    log_format = os.getenv("LOG_FORMAT", "json")
    log_level = os.getenv("LOG_LEVEL", "INFO")

    config = None
    if os.path.exists("LOGGING.yaml"):
        with open("LOGGING.yaml", 'r') as f:
            config = yaml.safe_load(f)

    if not config:
        config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JsonFormatter},
                "text": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S"
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": log_format,
                    "stream": "ext://sys.stdout"
                },
            },
            "loggers": {
                "jobtracker": {"level": log_level, "propagate": True},
                "uvicorn": {"level": log_level, "propagate": True},
            },
            "root": {
                "level": log_level,
                "handlers": ["console"]
            }
        }

    if log_format == "text":
        for handler in config.get("handlers", {}).values():
            if "formatter" in handler:
                handler["formatter"] = "text"

    for logger in config.get("loggers", {}).values():
        logger["level"] = log_level

    logging.config.dictConfig(config)

    if log_format == "json":
        memory_handler.setFormatter(JsonFormatter())
    else:
        memory_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if not isinstance(h, MemoryLogHandler)]
    root.addHandler(memory_handler)

    return config


def get_memory_handler() -> MemoryLogHandler:
    """Get the singleton memory handler instance"""
    return memory_handler

"""
Structured Logging Module

Provides JSON-formatted logging for the anemia screening backend.

Features:
- JSON log formatting for machine-readable logs
- Request context tracking (request ID, correlation ID, user ID)
- stdout and rotating NDJSON file outputs
- Sensitive data masking

Usage:
    from structured_logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(request_id="abc123", user_id="uid-42"):
        logger.info("Processing scan", extra={"scan_id": "a1b2c3d4"})

Configuration (environment variables):
    LOG_FORMAT: "json" or "text" (default: "json")
    LOG_OUTPUT: "stdout", "file", "all" (default: "stdout")
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: "INFO")
    LOG_FILE: path of the NDJSON log file (default: "logs/app.json.log")
"""

import json
import logging
import sys
import os
import threading
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
from pathlib import Path
import socket
import uuid

# Context variables for request tracking
_request_context: ContextVar[Dict[str, Any]] = ContextVar('request_context', default={})


# =============================================================================
# LOG CONTEXT MANAGEMENT
# =============================================================================

class LogContext:
    """
    Context manager for adding contextual information to logs.

    Usage:
        with LogContext(request_id="abc", user_id="uid-1"):
            logger.info("Processing")  # Will include request_id and user_id
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._token = None

    def __enter__(self):
        current = _request_context.get().copy()
        current.update(self.context)
        self._token = _request_context.set(current)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token:
            _request_context.reset(self._token)
        return False


def set_context(**kwargs):
    """Set context values for the current execution context."""
    current = _request_context.get().copy()
    current.update(kwargs)
    _request_context.set(current)


def get_context() -> Dict[str, Any]:
    """Get current logging context."""
    return _request_context.get().copy()


def clear_context():
    """Clear the current logging context."""
    _request_context.set({})


# =============================================================================
# JSON LOG FORMATTER
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:45.123Z",
        "level": "INFO",
        "logger": "pipeline.scan",
        "message": "Scan stored",
        "service": "anevia-backend",
        "environment": "production",
        "host": "server-01",
        "request_id": "abc123",
        "user_id": "uid-42",
        "extra": {...}
    }
    """

    STANDARD_FIELDS = {
        'timestamp', 'level', 'logger', 'message', 'service',
        'environment', 'host', 'request_id', 'correlation_id', 'user_id'
    }

    # Sensitive fields to mask
    SENSITIVE_FIELDS = {
        'password', 'token', 'secret', 'api_key', 'authorization',
        'private_key', 'id_token', 'access_token', 'refresh_token'
    }

    # Attributes every LogRecord carries; anything else came in through extra=
    _RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

    def __init__(
        self,
        service_name: str = "anevia-backend",
        environment: str = None,
        include_extra: bool = True,
        mask_sensitive: bool = True
    ):
        super().__init__()
        self.service_name = service_name
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.include_extra = include_extra
        self.mask_sensitive = mask_sensitive
        self.hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        context = get_context()

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "host": self.hostname,
        }

        for key in ['request_id', 'correlation_id', 'user_id']:
            if key in context:
                log_entry[key] = context[key]

        # Add source location for errors
        if record.levelno >= logging.ERROR:
            log_entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName
            }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stacktrace": self._format_exception(record.exc_info)
            }

        if self.include_extra:
            extra = {}
            for key, value in record.__dict__.items():
                if key in self._RESERVED_ATTRS or key.startswith('_'):
                    continue
                if key in self.STANDARD_FIELDS:
                    continue
                if self.mask_sensitive and self._is_sensitive(key):
                    extra[key] = "***MASKED***"
                else:
                    extra[key] = self._serialize_value(value)

            for key, value in context.items():
                if key not in log_entry and key not in extra:
                    extra[key] = self._serialize_value(value)

            if extra:
                log_entry["extra"] = extra

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    def _format_exception(self, exc_info) -> Optional[str]:
        """Format exception traceback."""
        if exc_info:
            return ''.join(traceback.format_exception(*exc_info))
        return None

    def _is_sensitive(self, key: str) -> bool:
        """Check if a field name indicates sensitive data."""
        key_lower = key.lower()
        return any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS)

    def _serialize_value(self, value: Any) -> Any:
        """Serialize a value for JSON output."""
        if isinstance(value, (str, int, float, bool, type(None))):
            return value
        elif isinstance(value, datetime):
            return value.isoformat()
        elif isinstance(value, (list, tuple)):
            return [self._serialize_value(v) for v in value]
        elif isinstance(value, dict):
            return {k: self._serialize_value(v) for k, v in value.items()}
        else:
            return str(value)


# =============================================================================
# NDJSON FILE HANDLER
# =============================================================================

class RotatingJSONFileHandler(logging.Handler):
    """
    File handler that writes one JSON object per line, rotating by size.
    """

    def __init__(
        self,
        filename: str,
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        encoding: str = 'utf-8'
    ):
        super().__init__()
        self.filename = Path(filename)
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.encoding = encoding
        self._lock = threading.Lock()

        self.filename.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, record: logging.LogRecord):
        """Write log record to file."""
        try:
            msg = self.format(record)

            with self._lock:
                if self.filename.exists() and self.filename.stat().st_size >= self.max_bytes:
                    self._rotate()

                with open(self.filename, 'a', encoding=self.encoding) as f:
                    f.write(msg + '\n')

        except Exception:
            self.handleError(record)

    def _rotate(self):
        """Rotate log files."""
        oldest = Path(f"{self.filename}.{self.backup_count}")
        if oldest.exists():
            oldest.unlink()

        for i in range(self.backup_count - 1, 0, -1):
            src = Path(f"{self.filename}.{i}")
            dst = Path(f"{self.filename}.{i + 1}")
            if src.exists():
                src.rename(dst)

        if self.filename.exists():
            self.filename.rename(Path(f"{self.filename}.1"))


# =============================================================================
# LOGGER FACTORY
# =============================================================================

_loggers: Dict[str, logging.Logger] = {}
_configured = False


def configure_logging(
    level: str = None,
    format: str = None,
    output: str = None,
    service_name: str = "anevia-backend",
    log_file: str = None
):
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format ("json" or "text")
        output: Output destination ("stdout", "file", "all")
        service_name: Service name for log entries
        log_file: Path to log file (for file output)
    """
    global _configured

    level = level or os.getenv("LOG_LEVEL", "INFO")
    format = format or os.getenv("LOG_FORMAT", "json")
    output = output or os.getenv("LOG_OUTPUT", "stdout")
    log_file = log_file or os.getenv("LOG_FILE", "logs/app.json.log")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    if format.lower() == "json":
        formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    outputs = [out.strip() for out in output.lower().split(",")]

    for out in outputs:
        if out in ("stdout", "all"):
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.setFormatter(formatter)
            root_logger.addHandler(stdout_handler)

        if out in ("file", "all"):
            if format.lower() == "json":
                file_handler = RotatingJSONFileHandler(log_file)
            else:
                Path(log_file).parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    _configured = True

    root_logger.info(
        "Logging configured",
        extra={
            "log_level": level,
            "log_format": format,
            "log_output": output,
            "log_file": log_file if "file" in outputs or "all" in outputs else None,
            "service": service_name
        }
    )


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance with structured logging support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    if not _configured:
        configure_logging()

    name = name or "app"

    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)

    return _loggers[name]


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    request_id: str = None,
    user_id: str = None,
    client_ip: str = None,
    **extra
):
    """Log an HTTP request in structured format."""
    logger = get_logger("http")

    log_data = {
        "http_method": method,
        "http_path": path,
        "http_status": status_code,
        "duration_ms": round(duration_ms, 2),
        "request_id": request_id,
        "user_id": user_id,
        "client_ip": client_ip,
        **extra
    }

    if status_code >= 500:
        logger.error("HTTP request failed", extra=log_data)
    elif status_code >= 400:
        logger.warning("HTTP request client error", extra=log_data)
    else:
        logger.info("HTTP request completed", extra=log_data)


def log_inference_call(
    service: str,
    duration_ms: float,
    success: bool,
    fallback: bool = False,
    confidence: float = None,
    predicted_class: str = None,
    error: str = None,
    **extra
):
    """
    Log a call to an external inference service (crop, classify, chat).

    Calls that ended on a fallback path are logged at WARNING with
    ``event="<service>_fallback"`` so degraded results can be told apart
    from genuine model output.
    """
    logger = get_logger("ml")

    log_data = {
        "inference_service": service,
        "duration_ms": round(duration_ms, 2),
        "success": success,
        "fallback": fallback,
        "confidence": confidence,
        "predicted_class": predicted_class,
        **extra
    }

    if fallback:
        log_data["event"] = f"{service}_fallback"
        log_data["error"] = error
        logger.warning("Inference fallback engaged", extra=log_data)
    elif not success:
        log_data["error"] = error
        logger.error("Inference call failed", extra=log_data)
    else:
        logger.info("Inference call completed", extra=log_data)


def log_security_event(
    event_type: str,
    severity: str,
    user_id: str = None,
    client_ip: str = None,
    details: str = None,
    **extra
):
    """Log a security-related event."""
    logger = get_logger("security")

    log_data = {
        "security_event": event_type,
        "severity": severity,
        "user_id": user_id,
        "client_ip": client_ip,
        "details": details,
        **extra
    }

    if severity in ("critical", "high"):
        logger.error("Security event", extra=log_data)
    elif severity == "medium":
        logger.warning("Security event", extra=log_data)
    else:
        logger.info("Security event", extra=log_data)


# =============================================================================
# REQUEST ID GENERATION
# =============================================================================

def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())[:12]

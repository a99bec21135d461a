"""
AI Routing Engine - Structured JSON Logging

Every record is one JSON object. The router binds the request's
correlation fields (request_id, user_id, model) to the running task, and
the formatter adds them to whatever is logged while the request is in
flight. Credential-like fields are redacted.

Configuration comes from LOG_LEVEL and LOG_FORMAT ("json" or "text") on
first use, or from an explicit ``setup_logging`` call.

Usage:
    logger = get_logger("routing_engine.router")
    token = LogContext.set_current(LogContext(request_id="req_123"))
    logger.info("Routing request", candidates=2)
    LogContext.reset(token)

Output:
    {"timestamp": "2025-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "routing_engine.router", "message": "Routing request",
     "request_id": "req_123", "candidates": 2}
"""

import os
import sys
import json
import logging
import time
from typing import Optional, Dict, Any, Union
from datetime import datetime, timezone
from dataclasses import dataclass
from contextvars import ContextVar, Token

_request_context: ContextVar[Optional["LogContext"]] = ContextVar("log_context", default=None)


@dataclass
class LogContext:
    """
    Correlation fields of the request being routed.

    Task-local through contextvars, so concurrent requests never see
    each other's fields.
    """
    request_id: str = ""
    user_id: str = ""
    model: str = ""

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _request_context.get()

    @classmethod
    def set_current(cls, ctx: Optional["LogContext"]) -> Token:
        """Bind ``ctx`` to the running task; returns a token for ``reset``."""
        return _request_context.set(ctx)

    @classmethod
    def reset(cls, token: Token):
        """Restore the context that was active before ``set_current``."""
        _request_context.reset(token)

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("request_id", self.request_id),
                ("user_id", self.user_id),
                ("model", self.model),
            )
            if value
        }


class JSONFormatter(logging.Formatter):
    """JSON formatter that adds the bound LogContext and the record's extra fields."""

    SENSITIVE_FIELDS = {
        "password", "secret", "token", "api_key", "apikey",
        "authorization", "credential", "private_key",
    }

    # Token counts contain "token" but are not secrets
    ALLOWED_FIELDS = {
        "prompt_tokens", "completion_tokens", "total_tokens", "tokens",
    }

    # Attributes every LogRecord carries
    RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "taskName"}

    def __init__(self, redact_sensitive: bool = True):
        super().__init__()
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS:
                continue
            if self.redact_sensitive and self._is_sensitive(key):
                value = "[REDACTED]"
            log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        if field_lower in self.ALLOWED_FIELDS:
            return False
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Logger whose keyword arguments become structured fields:

        logger.warning("Attempt failed", provider="openai", error_kind="timeout")
    """

    PASSTHROUGH = {"exc_info", "stack_info", "stacklevel"}

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        extra = kwargs.pop("extra", {})
        for key in [k for k in kwargs if k not in self.PASSTHROUGH]:
            extra[key] = kwargs.pop(key)
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


_logging_configured = False


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    redact_sensitive: bool = True,
) -> None:
    """
    Install one stdout handler on the root logger.

    Args:
        level: Log level name or number
        json_output: JSONFormatter when True, plain text otherwise
        redact_sensitive: Redact credential-like fields
    """
    global _logging_configured

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JSONFormatter(redact_sensitive=redact_sensitive))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(handler)

    # Adapter traffic is logged by the engine itself
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> StructuredLogger:
    """Structured logger; configures logging from the environment on first use."""
    if not _logging_configured:
        setup_logging(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
        )
    return StructuredLogger(logging.getLogger(name))


class TimedOperation:
    """
    Logs how long a block took, and whether it raised.

    Usage:
        async with TimedOperation("health_probe", logger, extra={"provider": "openai"}):
            await adapter.health_check()
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        log_level: int = logging.DEBUG,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.logger = logger or get_logger("routing_engine.timed_operation")
        self.log_level = log_level
        self.extra = extra or {}
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self) -> "TimedOperation":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        fields = {"operation": self.operation, "duration_ms": round(self.duration_ms, 2), **self.extra}

        if exc_type:
            self.logger.error(f"{self.operation} failed", error=str(exc_val), **fields)
        else:
            self.logger._log(self.log_level, f"{self.operation} completed", **fields)

    async def __aenter__(self) -> "TimedOperation":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)

"""
Structured logging with automatic trace context propagation.

Key Features:
- Standard logger.info() calls pick up the current execution context
- ContextVar-based propagation: async-safe across concurrently stepped contacts
- Dual output modes: JSON for production, human-readable for development

Architecture:
    FlowRuntime.handle_event() → sets contact_id
        ↓ (automatic propagation via ContextVar)
    FlowExecutor.step() → adds execution_id and flow_id
        ↓ (automatic propagation)
    Node handler → adds node_id
        ↓
    logger.info("message") → carries all of the above
"""

import json
import logging
import os
import re
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

# Record attributes copied into JSON output when passed via ``extra=``
_EXTRA_FIELDS = ("event", "node_id", "node_type", "status", "latency_ms")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Produces machine-parseable log entries with:
    - Standard fields (timestamp, level, logger, message)
    - Trace context (execution_id, contact_id, flow_id, node_id)
    - Selected fields from the ``extra`` dict
    """

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Colorized level plus a short correlation prefix built from the trace context.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        prefix_parts = []
        if context.get("contact_id"):
            prefix_parts.append(f"contact:{context['contact_id']}")
        if context.get("execution_id"):
            prefix_parts.append(f"exec:{context['execution_id'][-8:]}")
        if context.get("node_id"):
            prefix_parts.append(f"node:{context['node_id']}")

        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        message = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for the application.

    Call once at startup (CLI entry point, service main, test fixture).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "json", "human", or "auto" (JSON if LOG_FORMAT=json or
            ENV=production, else human)
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    formatter: logging.Formatter
    if format == "json":
        formatter = StructuredFormatter()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route HTTP client/server library logs through the same handler
    if format == "json":
        for logger_name in ("httpx", "httpcore", "aiohttp.access", "aiohttp.server"):
            logger = logging.getLogger(logger_name)
            logger.handlers.clear()
            logger.propagate = True


def set_trace_context(**kwargs: Any) -> Token:
    """
    Merge fields into the trace context of the current task.

    Called by the runtime at key points:
    - FlowRuntime.handle_event(): contact_id
    - FlowExecutor.step(): execution_id, flow_id
    - Node dispatch: node_id

    Returns a token for reset_trace_context().
    """
    current = trace_context.get() or {}
    return trace_context.set({**current, **kwargs})


def reset_trace_context(token: Token) -> None:
    """Restore the trace context to what it was before ``set_trace_context``."""
    trace_context.reset(token)


def get_trace_context() -> dict:
    """Return a copy of the current trace context (empty dict if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear trace context (mostly useful between tests)."""
    trace_context.set(None)

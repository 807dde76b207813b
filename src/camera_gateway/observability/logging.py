"""Structured logging for camera-gateway.

Thin layer over the standard logging module that lets every call carry
key-value fields next to the message:

- StructuredLogger accepts arbitrary keyword arguments as fields
- StructuredFormatter renders them as ``| key=value`` for consoles
- JSONFormatter renders one JSON object per line for log shippers
- LogContext scopes fields (transaction id, device index) to a block

LogContext is backed by contextvars, so each asyncio task spawned per
inbound command keeps its own correlation fields without leaking into
commands running concurrently on other devices.

Security Note:
    Values from the wire (transaction ids, payload fields) must be passed
    as keyword fields, never interpolated into the message text:

    # SAFE
    logger.warning("Dropping message", transaction_id=txn)

    # UNSAFE - CRLF in txn would forge log lines
    logger.warning(f"Dropping message {txn}")

Example:
    logger = get_logger(__name__)

    with LogContext(transaction_id="t-1", camera_idx=0):
        logger.info("Dispatching", cmd="GET_ROI")

    configure_logging(json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

ROOT_LOGGER_NAME = "camera_gateway"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "camera_gateway_log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept structured keyword fields.

    Usage:
        logger = get_logger("camera_gateway.gateway")
        logger.info("Frame published", camera_idx=0, size=2_494_848)
    """

    def debug(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at DEBUG with structured fields."""
        if self.isEnabledFor(logging.DEBUG):
            self._log(
                logging.DEBUG,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def info(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at INFO with structured fields."""
        if self.isEnabledFor(logging.INFO):
            self._log(
                logging.INFO,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def warning(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at WARNING with structured fields."""
        if self.isEnabledFor(logging.WARNING):
            self._log(
                logging.WARNING,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def error(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at ERROR with structured fields."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def exception(  # type: ignore[override]
        self,
        msg: object,
        *args: Any,
        exc_info: Any = True,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log at ERROR with the active exception and structured fields."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Merge active LogContext fields with call fields and emit.

        Explicit keyword fields win over context fields of the same name,
        so a handler can override e.g. ``cmd`` set by an outer scope.

        Args:
            level: Numeric log level.
            msg: Message, may contain % placeholders.
            args: Arguments for % formatting.
            exc_info: Exception info passed through to the record.
            extra: Extra record attributes; ``structured_data`` is
                overwritten with the merged fields.
            stack_info: Include a stack trace.
            stacklevel: Caller frames to skip for source attribution.
            **kwargs: Structured fields for this record.
        """
        structured_data = {**_log_context.get(), **kwargs}

        if extra is None:
            extra = {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Base format string. Defaults to
                ``%(asctime)s - %(name)s - %(levelname)s - %(message)s``.
            datefmt: Format for ``%(asctime)s``.
            include_structured: Append structured fields after the message.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the base record, then append ``| key=value`` pairs.

        Args:
            record: Record to format. Its optional ``structured_data``
                attribute holds the fields to append.

        Returns:
            Formatted line, e.g.
            ``... - INFO - Capture started | camera_idx=0 transaction_id=t-1``.
        """
        base = super().format(record)

        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """NDJSON formatter: one object per record, fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        """Render the record as a single JSON line.

        Keys: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``,
        ``message``, every structured field, and ``exception`` when the
        record carries exc_info. Unserializable values fall back to str().

        Args:
            record: Record to format.

        Returns:
            JSON string without trailing newline.
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_dict.update(getattr(record, "structured_data", {}))

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Render one structured value for StructuredFormatter.

    None becomes ``null``, strings containing spaces are quoted, dicts and
    lists are JSON encoded, anything else goes through str().

    Example:
        >>> _format_value("camera/instr")
        'camera/instr'
        >>> _format_value("Mock Camera")
        '"Mock Camera"'
        >>> _format_value([1, 2, 4])
        '[1, 2, 4]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


@dataclass
class LogContext:
    """Scope structured fields to a block of code.

    Nested contexts merge, inner values overriding outer ones. Safe across
    threads and asyncio tasks because state lives in a ContextVar.

    Usage:
        with LogContext(transaction_id="t-9", camera_idx=1):
            logger.info("Handling")          # both fields attached
            with LogContext(cmd="SET_ROI"):
                logger.info("Applying ROI")  # all three attached
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        """Store the fields to activate on enter."""
        self._kwargs = kwargs
        self._token = None

    def __enter__(self) -> LogContext:
        """Activate this context's fields on top of the current ones."""
        current = _log_context.get()
        self._token = _log_context.set({**current, **self._kwargs})
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the previous fields. Exceptions are not suppressed."""
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def current_context() -> dict[str, Any]:
    """Return a copy of the fields active in the current context."""
    return dict(_log_context.get())


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the ``camera_gateway`` logger hierarchy.

    Installs a single stream handler on the package root logger and stops
    propagation to the interpreter root logger. Idempotent unless ``force``
    is given; guarded by a lock so concurrent first calls are safe.

    Args:
        level: Minimum level, as int or name ("DEBUG", "INFO", ...).
        json_format: Use JSONFormatter instead of StructuredFormatter.
        stream: Target stream. Defaults to sys.stderr.
        include_structured: Append fields in the human-readable format.
            Ignored for JSON, which always includes them.
        force: Drop existing handlers and reconfigure.

    Example:
        >>> configure_logging(level="DEBUG")
        >>> configure_logging(json_format=True, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Configure while holding ``_config_lock``."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    if stream is None:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Reset while holding ``_config_lock``."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Remove package handlers and mark logging unconfigured (tests only)."""
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger for ``name``, configuring lazily.

    Loggers created before configure_logging() ran would be plain
    ``logging.Logger`` instances, so the first call installs the default
    configuration (INFO, human-readable, stderr).

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        Logger accepting keyword fields on every level method.
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    return cast(StructuredLogger, logging.getLogger(name))

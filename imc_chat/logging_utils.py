"""
Logging and tool-error helpers for the IMC chat engine.

Modules log through the standard library (`logging.getLogger(__name__)`);
the helpers here add structured, timed logging around whole operations
(a chat turn, a tool round trip, a health probe) using structlog, and
convert failures raised by tool servers into `McpError` values the model
client can report back to the model.

Features:
- One-call setup of stdlib and structlog output (`configure_logging`)
- Timed operation logging as a decorator or async context manager
- Tool failure classification into MCP error codes
- Loggers that carry session context across related calls
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import structlog
from mcp import McpError, types
from pydantic import ValidationError

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = structlog.get_logger(__name__)


def configure_logging(level: str | int = "INFO", *, colors: bool = True) -> None:
    """
    Configure stdlib logging and route structlog through it.

    Args:
        level: Root log level name or number (e.g. "DEBUG", logging.INFO)
        colors: Whether the console renderer uses ANSI colors
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Tool failure kinds, first match wins.  TimeoutError is an OSError and
# pydantic's ValidationError is a ValueError, so both are listed first.
_TOOL_ERROR_RULES: tuple[tuple[type | tuple[type, ...], int, str], ...] = (
    (ValidationError, types.INVALID_PARAMS, "validation_error"),
    (TimeoutError, types.INTERNAL_ERROR, "timeout_error"),
    ((ConnectionError, OSError), types.INTERNAL_ERROR, "connection_error"),
    ((ValueError, TypeError), types.INVALID_PARAMS, "parameter_error"),
)


class ToolErrorHandler:
    """Turns failures of tool servers into `McpError` values for the model."""

    @staticmethod
    def classify_error(error: Exception) -> tuple[int, str]:
        """
        Map a tool failure to ``(mcp_error_code, error_category)``.

        An `McpError` keeps the code its server chose.
        """
        if isinstance(error, McpError):
            return error.error.code, "mcp_error"
        for kinds, code, category in _TOOL_ERROR_RULES:
            if isinstance(error, kinds):
                return code, category
        return types.INTERNAL_ERROR, "unknown_error"

    @staticmethod
    def create_mcp_error(
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
        custom_message: str | None = None,
    ) -> McpError:
        """
        Wrap ``error`` in an `McpError` and log it once.

        The error data carries the operation name, the category, the
        original exception type and any extra ``context`` (for example the
        tool name or session id).
        """
        code, category = ToolErrorHandler.classify_error(error)
        data = {
            "operation": operation,
            "error_category": category,
            "original_error_type": type(error).__name__,
            **(context or {}),
        }

        if custom_message:
            message = custom_message
        elif isinstance(error, McpError):
            message = error.error.message
        else:
            message = f"{operation} failed: {error!s}"

        logger.error(
            "Tool operation failed",
            error_code=code,
            error_message=str(error),
            **data,
        )
        return McpError(error=types.ErrorData(code=code, message=message, data=data))


def _elapsed_ms(start_time: float | None) -> dict[str, Any]:
    if start_time is None:
        return {}
    return {"duration_ms": round((time.perf_counter() - start_time) * 1000, 2)}


@asynccontextmanager
async def _timed_span(
    span_logger: Any, *, log_timing: bool, **start_fields: Any
) -> AsyncIterator[dict[str, Any]]:
    """
    Log the start of an operation, then its completion or failure.

    Yields a dict; anything put in it is added to the completion event.
    """
    span_logger.debug("Operation started", **start_fields)
    start_time = time.perf_counter() if log_timing else None
    end_fields: dict[str, Any] = {}
    try:
        yield end_fields
    except Exception as e:
        span_logger.error(
            "Operation failed",
            error_type=type(e).__name__,
            error_message=str(e),
            **_elapsed_ms(start_time),
        )
        raise
    span_logger.debug(
        "Operation completed successfully", **end_fields, **_elapsed_ms(start_time)
    )


def log_operation(
    operation: str,
    *,
    log_args: bool = False,
    log_result: bool = False,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator logging each call of an async function as one operation.

    Args:
        operation: Operation name bound to every event
        log_args: Include positional (minus ``self``) and keyword arguments
        log_result: Include the return value in the completion event
        log_timing: Include ``duration_ms``
        context: Extra fields bound to every event
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation, function=func.__name__, **(context or {})
            )
            start_fields = {"args": args[1:], "kwargs": kwargs} if log_args else {}

            async with _timed_span(
                operation_logger, log_timing=log_timing, **start_fields
            ) as end_fields:
                result = await func(*args, **kwargs)
                if log_result:
                    end_fields["result"] = result
            return result

        return wrapper
    return decorator


def handle_tool_errors(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    custom_message: str | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator turning any failure of a tool operation into an McpError.

    Existing McpError instances are logged and re-raised unchanged.
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except McpError as e:
                logger.error(
                    "Tool server returned an MCP error",
                    operation=operation,
                    function=func.__name__,
                    mcp_error_code=e.error.code,
                    mcp_error_message=e.error.message,
                    **(context or {}),
                )
                raise
            except Exception as e:
                raise ToolErrorHandler.create_mcp_error(
                    e, operation, context, custom_message
                ) from e

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
) -> AsyncIterator[Any]:
    """
    Log a block of code as one operation.

    Yields:
        Logger bound to the operation and ``context``
    """
    operation_logger = logger.bind(operation=operation, **(context or {}))
    async with _timed_span(operation_logger, log_timing=log_timing):
        yield operation_logger


class ContextualLogger:
    """Logger that maintains context across related operations."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = base_context or {}
        self._logger = logger.bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        """Create a new logger with additional context."""
        return ContextualLogger({**self.base_context, **context})

    def info(self, message: str, **context: Any) -> None:
        self._logger.info(message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._logger.warning(message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._logger.error(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(message, **context)

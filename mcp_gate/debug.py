"""Logging helpers and request correlation for MCP Gate.

The gate tags each request with a short correlation id held in a context
variable, so a rejection, the tool call it allowed and any key refresh it
caused can be matched up in the logs. Per-call timing of tool handlers is off
by default; set MCP_GATE_DEBUG=1 or call enable_debug() to turn it on.
"""

import contextvars
import functools
import logging
import os
import time
import uuid
from typing import Any, Callable, TypeVar

logger = logging.getLogger("mcp_gate.debug")

DEBUG_ENV_VAR = "MCP_GATE_DEBUG"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Tool calls slower than this (milliseconds) are logged as warnings
SLOW_OPERATION_THRESHOLD_MS = 100

_TRUE_VALUES = frozenset({"1", "true", "yes"})

_current_request: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "mcp_gate_request_id", default=None
)
_debug_override = False

F = TypeVar("F", bound=Callable[..., Any])


def _new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def is_debug_enabled() -> bool:
    """True if enable_debug() was called or MCP_GATE_DEBUG is truthy."""
    if _debug_override:
        return True
    return os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in _TRUE_VALUES


def enable_debug() -> None:
    global _debug_override
    _debug_override = True


def disable_debug() -> None:
    global _debug_override
    _debug_override = False


def get_request_id() -> str:
    """Return the current correlation id, creating one if needed."""
    current = _current_request.get()
    if current is None:
        current = set_request_id()
    return current


def set_request_id(req_id: str | None = None) -> str:
    """Start a new correlation scope. Returns the id in effect."""
    req_id = req_id or _new_request_id()
    _current_request.set(req_id)
    return req_id


def clear_request_id() -> None:
    _current_request.set(None)


def token_preview(token: str | None, visible: int = 8) -> str:
    """Return a loggable preview of a credential. Full tokens are never logged."""
    if not token:
        return "None"
    if len(token) <= visible:
        return "***"
    return f"{token[:visible]}..."


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def timed_operation(fn: F, *, operation_name: str | None = None) -> F:
    """Wrap an async tool handler so its calls are timed when debugging.

    Args:
        fn: Async handler to wrap; its signature is preserved
        operation_name: Name used in log lines (defaults to fn.__name__)

    Returns:
        The wrapped handler
    """
    name = operation_name or fn.__name__

    @functools.wraps(fn)
    async def timed(*args: Any, **kwargs: Any) -> Any:
        if not is_debug_enabled():
            return await fn(*args, **kwargs)

        req_id = get_request_id()
        logger.debug("CALL [req=%s] %s(%s)", req_id, name, ", ".join(sorted(kwargs)))
        started = time.perf_counter()
        try:
            result = await fn(*args, **kwargs)
        except Exception as e:
            logger.error(
                "FAIL [req=%s] %s after %.1fms: %s: %s",
                req_id,
                name,
                _elapsed_ms(started),
                type(e).__name__,
                e,
            )
            raise

        elapsed = _elapsed_ms(started)
        if elapsed > SLOW_OPERATION_THRESHOLD_MS:
            logger.warning("SLOW [req=%s] %s took %.1fms", req_id, name, elapsed)
        else:
            logger.debug("DONE [req=%s] %s took %.1fms", req_id, name, elapsed)
        return result

    return timed  # type: ignore[return-value]


class DebugContext:
    """Scope a correlation id to a block, restoring the outer one on exit.

    Usage:
        async with DebugContext("warmup"):
            await cache.refresh()
    """

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id or _new_request_id()
        self._reset_token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> "DebugContext":
        self._reset_token = _current_request.set(self.request_id)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._reset_token is not None:
            _current_request.reset(self._reset_token)
            self._reset_token = None

    async def __aenter__(self) -> "DebugContext":
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Send the mcp_gate loggers to stderr at the given level.

    Args:
        level: A logging level number or name such as "DEBUG"; unknown
            names fall back to INFO
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    package_logger = logging.getLogger("mcp_gate")
    package_logger.setLevel(level)
    if package_logger.handlers:
        return

    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(stream)

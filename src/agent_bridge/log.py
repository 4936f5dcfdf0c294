"""Structured logging for agent_bridge, built on structlog."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, TextIO

import structlog


if TYPE_CHECKING:
    from collections.abc import MutableMapping


LogLevel = int | str

PACKAGE_LOGGER = "agent_bridge"
MASK = "***"
SENSITIVE_KEYS = frozenset({
    "secret",
    "secret_key",
    "x-secret-key",
    "api_key",
    "token",
    "password",
})
"""Event dict keys whose values never reach a log sink."""


def mask_sensitive_values(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor replacing values of sensitive keys with a mask."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def _resolve_level(level: LogLevel) -> int:
    return getattr(logging, level.upper()) if isinstance(level, str) else level


def build_processors(*, json_output: bool, use_colors: bool) -> list[Any]:
    """Processor chain shared by console and JSON output."""
    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        mask_sensitive_values,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=use_colors))
    return processors


def configure_logging(
    level: LogLevel = "INFO",
    *,
    use_colors: bool | None = None,
    json_logs: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Route agent_bridge logs (including relayed server output) to a stream.

    Args:
        level: Logging level
        use_colors: Whether to use colored output (auto-detected if None)
        json_logs: Force JSON output regardless of TTY detection
        stream: Output stream, defaults to stderr
    """
    stream = stream or sys.stderr
    logging.basicConfig(
        level=_resolve_level(level),
        handlers=[logging.StreamHandler(stream)],
        force=True,
        format="%(message)s",
    )
    is_tty = stream.isatty()
    if use_colors is None:
        use_colors = is_tty and not json_logs
    structlog.configure(
        processors=build_processors(
            json_output=json_logs or (not use_colors and not is_tty),
            use_colors=use_colors,
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, log_level: LogLevel | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger inside the agent_bridge namespace.

    Args:
        name: Logger name, prefixed with `agent_bridge.` unless it already is
        log_level: Optional level for the underlying stdlib logger
    """
    if name != PACKAGE_LOGGER and not name.startswith(f"{PACKAGE_LOGGER}."):
        name = f"{PACKAGE_LOGGER}.{name}"
    if log_level is not None:
        logging.getLogger(name).setLevel(_resolve_level(log_level))
    return structlog.get_logger(name)

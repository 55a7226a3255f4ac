"""
Structured logging for the launchpad client

Events are snake_case names with keyword fields. Ledger values (Pubkey,
Signature, Hash) may be passed as fields directly; they are rendered as
base58 strings. API keys embedded in RPC URLs are masked before rendering.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Any, Optional, TYPE_CHECKING

import structlog
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from structlog.typing import EventDict, Processor

if TYPE_CHECKING:
    from launchpad.core.config import LogConfig


_LEDGER_TYPES = (Pubkey, Signature, Hash)

# api-key=..., api_key=..., apikey=... in query strings
_API_KEY_PATTERN = re.compile(r"(api[-_]?key=)[^&\s\"']+", re.IGNORECASE)


def _render_value(value: Any) -> Any:
    if isinstance(value, _LEDGER_TYPES):
        return str(value)
    if isinstance(value, str):
        return _API_KEY_PATTERN.sub(r"\1***", value)
    if isinstance(value, (list, tuple)):
        return [_render_value(v) for v in value]
    return value


def render_ledger_values(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stringify solders values and mask API keys in every field"""
    for key, value in event_dict.items():
        event_dict[key] = _render_value(value)
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structlog on top of stdlib logging

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        format: "json" for one object per line, "console" for humans
        output_file: Also write events to this file (parent dirs are created)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if output_file:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(output_file))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)

    # aiohttp logs every connection reset at INFO
    logging.getLogger("aiohttp").setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        render_ledger_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_logging_from_config(log_config: "LogConfig") -> None:
    setup_logging(level=log_config.level, format=log_config.format, output_file=log_config.output_file)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_context(**fields):
    """
    Bind fields to every event logged inside the block

    Usage:
        with log_context(refresh_generation=3):
            logger.info("refresh_started")
    """
    return structlog.contextvars.bound_contextvars(**fields)

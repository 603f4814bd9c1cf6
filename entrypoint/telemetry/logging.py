"""
EntryPoint — Structured Logging

All logging via structlog, rendered through the stdlib root logger.

Every entry carries the component that emitted it (system=...) and, while a
bundle is being handled, the bundle_id bound by bundle_context(). Raw byte
payloads (selectors, revert reasons) never reach the renderer as bytes: they
are shown as truncated hex.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from entrypoint.config import LoggingConfig

_MAX_HEX_BYTES = 32


def _hex_bytes(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Render bytes values as 0x-hex, truncated to _MAX_HEX_BYTES."""
    for key, value in event_dict.items():
        if isinstance(value, (bytes, bytearray)):
            shown = bytes(value[:_MAX_HEX_BYTES]).hex()
            suffix = ""
            if len(value) > _MAX_HEX_BYTES:
                suffix = f"...(+{len(value) - _MAX_HEX_BYTES}B)"
            event_dict[key] = f"0x{shown}{suffix}"
    return event_dict


@contextmanager
def bundle_context(bundle_id: str, **extra: Any) -> Iterator[None]:
    """Bind bundle_id (and any extra fields) to every log entry in the block."""
    with structlog.contextvars.bound_contextvars(bundle_id=bundle_id, **extra):
        yield


def setup_logging(config: LoggingConfig, instance_id: str = "") -> None:
    """
    Configure structured logging for the entire application.

    config.format selects the renderer: "json" for machine ingestion,
    anything else for the coloured console renderer.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _hex_bytes,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if instance_id:
        structlog.contextvars.bind_contextvars(instance_id=instance_id)

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    # asyncio debug chatter drowns bundle events at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)

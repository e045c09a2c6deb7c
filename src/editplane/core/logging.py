"""Structured logging for the epl commands.

stdout carries exactly one JSON response per invocation, so log events only
ever reach stderr or a log file. Module loggers are lazy proxies: a module can
call ``get_logger`` at import time and still pick up whatever
``configure_logging`` installs later. Each invocation binds a request id
through structlog's contextvars so every event it emits can be correlated.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from editplane.config.models import LoggingConfig, LogOutputConfig

_REQUEST_ID_KEY = "request_id"

_TIMESTAMP = structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp")


def set_request_id(request_id: str | None = None) -> str:
    """Bind the invocation's request id (generated when not given)."""
    rid = request_id or uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(**{_REQUEST_ID_KEY: rid})
    return rid


def get_request_id() -> str | None:
    value = structlog.contextvars.get_contextvars().get(_REQUEST_ID_KEY)
    return value if isinstance(value, str) else None


def clear_request_id() -> None:
    structlog.contextvars.unbind_contextvars(_REQUEST_ID_KEY)


def _event_chain() -> list[structlog.types.Processor]:
    """Processors shared by structlog events and plain stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _TIMESTAMP,
    ]


def _renderer(output: LogOutputConfig, stream: Any) -> structlog.types.Processor:
    if output.format == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    colors = stream is not None and stream.isatty()
    return structlog.dev.ConsoleRenderer(colors=colors, pad_event_to=0, pad_level=False)


def _handler(output: LogOutputConfig) -> tuple[logging.Handler, Any]:
    if output.destination == "stderr":
        return logging.StreamHandler(sys.stderr), sys.stderr
    path = Path(output.destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8"), None


def configure_logging(*, config: LoggingConfig) -> None:
    """Route structlog through stdlib handlers built from ``config.outputs``.

    Safe to call once per invocation: previous handlers are replaced and no
    logger is cached, so proxies obtained earlier follow the new setup.
    """
    root_level = logging.getLevelName(config.level)
    chain = _event_chain()

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        if isinstance(existing, logging.FileHandler):
            existing.close()
    root.setLevel(root_level)

    for output in config.outputs:
        handler, stream = _handler(output)
        handler.setLevel(logging.getLevelName(output.level or config.level))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    _renderer(output, stream),
                ],
                foreign_pre_chain=chain,
            )
        )
        root.addHandler(handler)


def get_logger(name: str = "editplane") -> Any:
    """Lazy logger proxy; ``name`` becomes the ``logger`` field of each event."""
    return structlog.get_logger(name)

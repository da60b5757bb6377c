"""structlog setup shared by every wtcoord process.

Several workers (and their detached heartbeat writers) often log to the same
terminal, so each event carries the emitting pid. Records from plain
``logging`` loggers, as used by the git helpers, go through the same
renderer as structlog events.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

_HANDLER_NAME = "wtcoord"


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stderr`` is at emit time."""

    def __init__(self) -> None:
        super().__init__()
        self.set_name(_HANDLER_NAME)

    @property
    def stream(self) -> Any:  # type: ignore[override]
        return sys.stderr

    @stream.setter
    def stream(self, _value: Any) -> None:
        pass


def _add_pid(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("pid", os.getpid())
    return event_dict


def setup_logging(*, debug: bool = False, json_output: bool = False) -> None:
    """Configure structlog and route stdlib logging through it.

    Safe to call more than once; the previous handler is replaced.

    Args:
        debug: Enable DEBUG level logging.
        json_output: Emit one JSON object per line instead of console output.
    """
    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_pid,
    ]
    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    handler = _StderrHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info if json_output else _passthrough,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if h.get_name() != _HANDLER_NAME]
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _passthrough(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # ConsoleRenderer formats exc_info itself.
    return event_dict


def get_logger(name: str = "wtcoord", **kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name, **kwargs)


def bind_task_context(worker_id: str, task_id: str) -> None:
    """Attach worker/task ids to every log event emitted in this context."""
    structlog.contextvars.bind_contextvars(worker=worker_id, task=task_id)


def clear_task_context() -> None:
    structlog.contextvars.unbind_contextvars("worker", "task")

"""Structlog setup for the extbuilder CLI.

Builder output lines are logged at INFO with a ``stream`` key. The console
renderer shows them as ``<builder>[<pid>] <stream>: <line>`` so they read like
the child's own output; JSON mode keeps them as structured fields.
"""

from __future__ import annotations

import logging as std_logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

_LEVELS = (std_logging.WARNING, std_logging.INFO, std_logging.DEBUG)


def level_for_verbosity(verbosity: int) -> int:
    return _LEVELS[max(0, min(verbosity, len(_LEVELS) - 1))]


def format_child_output(
    _logger: Any,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Fold the child's identity into the event text of output lines."""

    stream = event_dict.pop("stream", None)
    if stream is None:
        return event_dict
    source = str(event_dict.pop("builder", "builder"))
    pid = event_dict.pop("pid", None)
    if pid is not None:
        source = f"{source}[{pid}]"
    event_dict["event"] = f"{source} {stream}: {event_dict['event']}"
    return event_dict


def configure_logging(json_mode: bool = False, verbosity: int = 0) -> None:
    """Configure structlog and stdlib logging for one CLI invocation.

    ``-v`` shows builder output and lifecycle events, ``-vv`` adds signal
    delivery details.
    """

    level = level_for_verbosity(verbosity)
    handler = std_logging.StreamHandler(sys.stderr)
    handler.setFormatter(std_logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    # Config warnings go through stdlib logging.
    std_logging.basicConfig(level=level, handlers=[handler])

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_mode:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors += [format_child_output, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        # Nothing extbuilder logs goes to stdout.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

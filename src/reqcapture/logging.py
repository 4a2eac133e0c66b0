import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.typing import EventDict

_DROP_LOG_FIELDS = frozenset(
    {
        "body",
        "content",
        "data",
        "headers",
        "json",
    }
)


def drop_payload_fields(logger: t.Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Remove request payload fields from a log event.

    Parameters
    ----------
    logger : typing.Any
        Wrapped logger, unused.
    method_name : str
        Log method name, unused.
    event_dict : EventDict
        Event being processed.

    Returns
    -------
    EventDict
        Event without payload fields.
    """
    for key in _DROP_LOG_FIELDS.intersection(event_dict):
        del event_dict[key]
    return event_dict


def setup_logging(level: int = logging.WARNING) -> None:
    """
    Configure structlog and the package logger level.
    """
    logging.getLogger(name="reqcapture").setLevel(level=level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # Critical for context vars
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            drop_payload_fields,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**required_context) -> Iterator[None]:
    current = structlog.contextvars.get_contextvars()
    to_bind = {k: v for k, v in required_context.items() if k not in current}

    if to_bind:
        with structlog.contextvars.bound_contextvars(**to_bind):
            yield
    else:
        yield

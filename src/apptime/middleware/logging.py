"""Logging for the API process and the standalone scheduler.

Pipeline modules log through stdlib loggers. Those records and structlog's
own events go through one ProcessorFormatter, so job, settlement and
request logs share a format and all carry the bound request id.
"""

import logging
from typing import IO, Any

import structlog

from apptime.config import Settings

HANDLER_NAME = "apptime"

# One line per SQL statement / driver call at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def _service_fields(settings: Settings) -> structlog.types.Processor:
    def add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", "apptime-pipeline")
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return add_service


def setup_logging(settings: Settings, stream: IO[str] | None = None) -> None:
    """Configure structlog and route stdlib records through it.

    Safe to call more than once; the previous apptime handler is replaced.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _service_fields(settings),
    ]

    if settings.log_format == "json":
        final: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        final = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final],
        )
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)

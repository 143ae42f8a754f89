"""structlog on top of stdlib logging for the chat API process.

Library loggers (uvicorn, httpx, openai, agno) go through the same
ProcessorFormatter as our own structlog events, so every line carries the
request id bound by RequestIDMiddleware.
"""

import logging
import logging.config

import structlog
from structlog.dev import ConsoleRenderer

_LOCAL_ENVIRONMENTS = frozenset({"", "local", "development", "dev", "test"})

# Third-party loggers and the level they are capped at
_LIBRARY_LEVELS = {
    "uvicorn.access": "INFO",
    "uvicorn.error": "INFO",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "openai": "WARNING",
    "agno": "WARNING",
}

_configured = False


def is_local_environment(environment: str | None) -> bool:
    return (environment or "").strip().lower() in _LOCAL_ENVIRONMENTS


def _renderer(environment: str | None):
    if is_local_environment(environment):
        return ConsoleRenderer(colors=True, pad_event_to=40)
    return structlog.processors.JSONRenderer()


def configure_logging(log_level: str, environment: str | None = None) -> None:
    """Install structlog and the stdlib bridge once per process.

    Local environments get coloured console output; anything else logs JSON.
    Later calls are ignored.
    """
    global _configured
    if _configured:
        return

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "streamchat": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        _renderer(environment),
                    ],
                    "foreign_pre_chain": shared_processors,
                },
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "streamchat",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"handlers": ["stdout"], "level": log_level.upper()},
            "loggers": {name: {"level": level} for name, level in _LIBRARY_LEVELS.items()},
        }
    )

    _configured = True
    structlog.get_logger(__name__).debug(
        "logging.configured", level=log_level, environment=environment or "local"
    )

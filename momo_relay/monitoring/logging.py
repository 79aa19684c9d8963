"""
Structured logging configuration.

structlog renders every relay event as one JSON line carrying the service
identity; stdlib loggers (uvicorn, httpx, SQLAlchemy) go through
python-json-logger on the same stream.
"""
import logging
import sys
from typing import Any, Callable, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger

from momo_relay import __version__
from momo_relay.config import Settings, get_settings

EventDict = Dict[str, Any]

# Third-party loggers that are only useful at WARNING and above
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")


def relay_context(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """
    Build a processor that stamps events with the service identity.

    Args:
        settings: Settings the service was started with

    Returns:
        Callable: structlog processor adding ``service``, ``version`` and
        ``app_env`` unless the event already sets them
    """
    context = {
        "service": settings.app_name,
        "version": __version__,
        "app_env": settings.app_env,
    }

    def add_relay_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_relay_context


def _stdlib_handler(settings: Settings) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "logger",
                "message": "event",
            },
            static_fields={"service": settings.app_name, "app_env": settings.app_env},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Request ids bound by the HTTP middleware reach every event through
    ``merge_contextvars``. Safe to call more than once; the root handler is
    replaced, not duplicated.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            relay_context(settings),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(_stdlib_handler(settings))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        database=settings.database_url.split("://", 1)[0],
    )

import logging
import sys
import structlog
from membermap.core.config import settings

# Loggers that are chatty at INFO; httpx would also print provider URLs, Amap key included
_QUIET_LOGGERS = {"httpx": logging.WARNING, "httpcore": logging.WARNING}


def _add_service(_, __, event_dict):
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("version", settings.VERSION)
    return event_dict


def configure_logging(level: str = None):
    """
    Route structlog events and plain stdlib records (the geocoding client and
    the API routes log through ``logging``) into one handler on stdout.

    Development renders for the console; every other ENV renders one JSON
    object per line.
    """
    is_local = settings.ENV.lower() == "development"
    level = (level or settings.LOG_LEVEL).upper()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _add_service,
    ]

    if is_local:
        renderer = structlog.dev.ConsoleRenderer()
        final_processors = [renderer]
    else:
        renderer = structlog.processors.JSONRenderer()
        final_processors = [structlog.processors.dict_tracebacks, renderer]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + final_processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # uvicorn keeps its own handlers unless told otherwise
    for _log in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logger = logging.getLogger(_log)
        logger.handlers = []
        logger.propagate = True

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

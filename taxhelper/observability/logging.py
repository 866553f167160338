"""
Log setup shared by the API process and the RQ receipt worker.

Every line carries the app version, the environment and the process role
("api" or "worker") so receipt events from both sides can be joined on job_id.
Rendering is JSON lines unless DEBUG is set.
"""

import logging
import sys

import structlog

from taxhelper.config import settings

# Third-party loggers and the level they are held at outside of DB_ECHO
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "rq.worker": logging.WARNING,
}


def add_app_context(logger, method_name, event_dict):
    event_dict.setdefault("app_version", settings.APP_VERSION)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def setup_logging(role: str = "api") -> None:
    """
    Route structlog and stdlib logging through one stdout handler.
    Safe to call again; the root handler is replaced, not stacked.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(role=role)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = (
        structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DB_ECHO else logging.WARNING
    )

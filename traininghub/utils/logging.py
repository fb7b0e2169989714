"""Structured logging for the API process and the export workers.

Application events go through structlog (JSON lines, or console output in
debug mode). The stdlib root logger carries third-party output (uvicorn,
SQLAlchemy, aiosqlite) to stdout and the rotating ``traininghub.log``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import structlog

# Loggers that flood the output at INFO while export jobs run their queries
DATABASE_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite")


def setup_logging(
    debug: bool = False,
    log_dir: str = "logs",
    log_max_bytes: int = 10_000_000,
    log_backup_count: int = 5,
    database_log_level: str = "WARNING",
) -> None:
    """Configure structlog and the stdlib root logger.

    ``database_log_level`` applies to the SQLAlchemy and aiosqlite loggers;
    set it to INFO or DEBUG to trace the export queries.
    """
    log_level = logging.DEBUG if debug else logging.INFO
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # setup_logging runs again on reload; never stack handlers
    root_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "traininghub.log"),
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError as exc:
        root_logger.warning("log_file_unavailable: %s", exc)

    db_level = getattr(logging, database_log_level.upper())
    for name in DATABASE_LOGGERS:
        logging.getLogger(name).setLevel(db_level)


def bind_job_context(job_id: str) -> None:
    """Tag every event logged by the current task with ``job_id``."""
    structlog.contextvars.bind_contextvars(job_id=job_id)


def clear_job_context() -> None:
    structlog.contextvars.unbind_contextvars("job_id")


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)

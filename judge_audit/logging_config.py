"""structlog setup for the CLI and the scheduler daemon."""

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog once per process.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Emit one JSON object per line instead of the coloured
            console format. Used when the scheduler runs unattended.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info if json_output else structlog.dev.set_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_run_context(run_id: str) -> None:
    """Attach run_id to every event logged by this task and its children."""
    structlog.contextvars.bind_contextvars(run_id=run_id)


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars("run_id")

"""
Structured logging setup for the lead crawl workers.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_worker_context,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


def _add_worker_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag entries emitted inside a bound job with the queue name."""
    queue = event_dict.get("queue")
    if queue and "job_id" in event_dict:
        event_dict.setdefault("component", f"worker.{queue}")
    return event_dict


def bind_job_context(**values: Any) -> None:
    """Bind job-scoped fields (queue, job_id, task_id...) for the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_job_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_job_outcome(queue: str, job_id: str, outcome: str, duration_ms: float, error: str = None):
    """Log queue job results with consistent fields."""
    logger = get_logger("jobs")

    log_data = {
        "queue": queue,
        "job_id": job_id,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 2),
    }

    if error:
        log_data["error"] = error

    if outcome == "completed":
        logger.info("Job completed", **log_data)
    elif outcome == "retrying":
        logger.warning("Job failed, retry scheduled", **log_data)
    else:
        logger.error("Job failed permanently", **log_data)

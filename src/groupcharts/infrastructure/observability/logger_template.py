"""Shared logger helpers.

USAGE:
    from groupcharts.infrastructure.observability.logger_template import log_operation

    async with log_operation(logger, "chart_generation", group_id=group_id):
        await service.generate_week(group_id, week_start)
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


# Yo, this context manager logs start/end with automatic duration tracking. On failure it logs
# with exc_info=True and RE-RAISES - it never swallows anything.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[None]:
    """Log operation start/end with automatic timing.

    Args:
        logger: Module logger
        operation: Operation name (e.g., "chart_generation", "records_refresh")
        **context: Extra fields added to every log line of the operation
    """
    start = time.time()
    logger.info(f"{operation}.started", extra=context)

    try:
        yield
    except Exception as e:
        duration_ms = int((time.time() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    duration_ms = int((time.time() - start) * 1000)
    logger.info(f"{operation}.completed", extra={**context, "duration_ms": duration_ms})


def log_worker_health(
    logger: logging.Logger,
    worker_name: str,
    cycles_completed: int,
    errors_total: int,
    uptime_seconds: float,
    extra_stats: dict[str, Any] | None = None,
) -> None:
    """Log worker health status in a consistent format.

    Args:
        logger: Logger instance
        worker_name: Worker identifier (e.g., "chart_generation")
        cycles_completed: Total cycles completed since start
        errors_total: Total errors encountered since start
        uptime_seconds: Seconds since worker started
        extra_stats: Optional additional stats
    """
    logger.info(
        "worker.health",
        extra={
            "worker": worker_name,
            "cycles_completed": cycles_completed,
            "errors_total": errors_total,
            "uptime_seconds": int(uptime_seconds),
            **(extra_stats or {}),
        },
    )

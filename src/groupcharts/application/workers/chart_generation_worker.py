"""Chart Generation Worker - keeps every group's charts up to date.

Hey future me - this is what turns "a week ended" into a chart without anyone clicking.

Every cycle, per group (each group in its OWN session + transaction):
1. Generate every finished week after the latest chart (the last few finished weeks
   for a group without charts). No-op when the group is up to date
2. Regenerate queued weeks that have finished (tracking-day changes)
3. If anything was generated: rebuild records + the all-time catalogue

A group that fails rolls back its own transaction, gets logged, and the cycle moves on to
the next group. One broken group never blocks the others.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from groupcharts.application.services.all_time_stats_service import AllTimeStatsService
from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.application.services.records_service import RecordsService
from groupcharts.config import Settings, get_settings
from groupcharts.infrastructure.observability.logger_template import log_worker_health
from groupcharts.infrastructure.persistence.repositories import GroupRepository

logger = logging.getLogger(__name__)


class ChartGenerationWorker:
    """Periodic chart generation for all groups.

    Lifecycle:
    - Created in the app lifespan when worker.enabled is set
    - Runs as an asyncio task via start()
    - Stopped via stop() during shutdown
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        check_interval: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._check_interval = check_interval or self._settings.worker.check_interval
        self._running = False
        self._started_at: float | None = None
        self._stats: dict[str, Any] = {
            "cycles_completed": 0,
            "errors_total": 0,
            "weeks_generated": 0,
            "weeks_regenerated": 0,
            "last_cycle_at": None,
        }

    async def start(self) -> None:
        """Run cycles until stop() is called."""
        self._running = True
        self._started_at = time.monotonic()
        logger.info(f"ChartGenerationWorker started (check_interval={self._check_interval}s)")

        while self._running:
            try:
                await self.run_cycle()
            except Exception as e:
                # Log but don't crash - next cycle tries again
                self._stats["errors_total"] += 1
                logger.exception(f"ChartGenerationWorker cycle error: {e}")

            log_worker_health(
                logger,
                "chart_generation",
                cycles_completed=self._stats["cycles_completed"],
                errors_total=self._stats["errors_total"],
                uptime_seconds=time.monotonic() - self._started_at,
            )
            await asyncio.sleep(self._check_interval)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("ChartGenerationWorker stopping...")

    async def run_cycle(self, now: datetime | None = None) -> dict[str, Any]:
        """One pass over every group.

        Returns:
            Cycle summary (groups processed / failed, weeks generated / regenerated)
        """
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            group_ids = await GroupRepository(session).list_ids()

        summary = {"groups": len(group_ids), "failed": 0, "generated": 0, "regenerated": 0}
        for group_id in group_ids:
            try:
                generated, regenerated = await self._process_group(group_id, now)
            except Exception as e:
                summary["failed"] += 1
                self._stats["errors_total"] += 1
                logger.exception(f"Chart generation failed for group {group_id}: {e}")
                continue
            summary["generated"] += generated
            summary["regenerated"] += regenerated

        self._stats["cycles_completed"] += 1
        self._stats["weeks_generated"] += summary["generated"]
        self._stats["weeks_regenerated"] += summary["regenerated"]
        self._stats["last_cycle_at"] = datetime.now(UTC)
        if summary["generated"] or summary["regenerated"]:
            logger.info(f"Chart generation cycle done: {summary}")
        return summary

    async def _process_group(self, group_id: str, now: datetime) -> tuple[int, int]:
        async with self._session_factory() as session:
            try:
                charts = ChartGenerationService(session, settings=self._settings)
                generated = len(await charts.generate_missing_weeks(group_id, now))
                regenerated = await charts.process_regeneration_queue(group_id, now)

                if generated or regenerated:
                    await RecordsService(session, self._settings).calculate_group_records(
                        group_id
                    )
                    await AllTimeStatsService(session).calculate(group_id)

                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return generated, regenerated

    def get_stats(self) -> dict[str, Any]:
        """Worker statistics."""
        return {
            **self._stats,
            "running": self._running,
            "check_interval": self._check_interval,
        }


# Hey future me - factory function for easy worker creation from app context
def create_chart_generation_worker(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> ChartGenerationWorker:
    """Create a ChartGenerationWorker from settings."""
    return ChartGenerationWorker(session_factory=session_factory, settings=settings)

"""Group recommendations - the three-stage compatibility funnel.

1. Pre-filter (one set of cheap queries): drop groups the user is in, solo groups, private
   groups without free join, rejected groups, groups with too few members and groups with no
   stats at all.
2. Candidate selection: the user's top artists over the trailing window vs each group's
   catalogue; keep groups sharing at least one artist.
3. Scoring: CompatibilityService per candidate, in batches of ``batch_size`` run with
   asyncio.gather(return_exceptions=True). A candidate that blows up is logged and dropped,
   the rest of the batch still counts. Pairs scored within ``score_ttl_hours`` reuse the
   stored score instead; a forced refresh rescores everything.

Hey future me - an AsyncSession is NOT safe to share between concurrent tasks. Every scoring
task opens its own (read-only) session from the session factory; only this service's session
writes score rows and the cache afterwards. The genre lookups share one InMemoryCache so the
same popular artists aren't fetched once per candidate.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from groupcharts.application.cache import CachedGenreProvider, InMemoryCache
from groupcharts.application.services.all_time_stats_service import merge_weekly_lists
from groupcharts.application.services.compatibility_service import (
    CompatibilityBreakdown,
    CompatibilityService,
    ListeningProfile,
)
from groupcharts.config import Settings, get_settings
from groupcharts.domain.exceptions import BusinessRuleViolation
from groupcharts.domain.value_objects.weeks import ensure_utc
from groupcharts.infrastructure.observability.logger_template import log_operation
from groupcharts.infrastructure.persistence.models import (
    GroupModel,
    GroupWeeklyStatsModel,
)
from groupcharts.infrastructure.persistence.repositories import (
    AllTimeStatsRepository,
    ChartRepository,
    CompatibilityRepository,
    GenreRepository,
    GroupRepository,
)

logger = logging.getLogger(__name__)


class RecommendationService:
    """Recommends groups to a user and remembers rejections."""

    def __init__(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        genre_cache: InMemoryCache[str, list[str]] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._genre_cache: InMemoryCache[str, list[str]] = genre_cache or InMemoryCache()
        self._groups = GroupRepository(session)
        self._charts = ChartRepository(session)
        self._all_time = AllTimeStatsRepository(session)
        self._scores = CompatibilityRepository(session)

    # ===== PUBLIC =====

    async def get_recommendations(
        self, user_id: str, now: datetime | None = None, force: bool = False
    ) -> list[dict[str, Any]]:
        """Top groups for a user, served from the cache while it's fresh."""
        now = ensure_utc(now or datetime.now(UTC))
        cfg = self.settings.compatibility
        cached = await self._scores.get_cache(user_id)
        if (
            not force
            and cached is not None
            and ensure_utc(cached.last_calculated) + timedelta(hours=cfg.cache_ttl_hours) > now
        ):
            logger.debug("Recommendation cache hit for user %s", user_id)
            return await self._with_group_names(list(cached.recommendations or []))

        async with log_operation(logger, "recommendations", user_id=user_id):
            recommendations = await self._calculate(user_id, now, reuse_scores=not force)
            await self._scores.save_cache(user_id, recommendations, now)
        return await self._with_group_names(recommendations)

    async def reject_group(self, user_id: str, group_id: str) -> bool:
        """Never recommend ``group_id`` to ``user_id`` again. Returns False if already rejected.

        Raises:
            EntityNotFoundException: Unknown group
            BusinessRuleViolation: The user is a member of the group
        """
        await self._groups.get(group_id)
        if group_id in await self._groups.get_group_ids_for_user(user_id):
            raise BusinessRuleViolation(
                f"User {user_id} is a member of group {group_id} and cannot reject it"
            )
        added = await self._scores.add_rejection(user_id, group_id)
        await self._scores.clear_cache(user_id)
        logger.info("User %s rejected group %s", user_id, group_id)
        return added

    # ===== FUNNEL =====

    async def _calculate(
        self, user_id: str, now: datetime, reuse_scores: bool = True
    ) -> list[dict[str, Any]]:
        cfg = self.settings.compatibility

        eligible = await self._prefilter(user_id)
        if not eligible:
            return []

        scorer = CompatibilityService(self.session, settings=self.settings)
        user_profile = await scorer.user_profile(user_id, now)
        if user_profile.is_empty:
            logger.info("User %s has no listening in the window; nothing to recommend", user_id)
            return []

        candidates = await self._select_candidates(
            eligible, set(user_profile.top_artists(cfg.top_artist_limit))
        )
        logger.debug(
            "Recommendation funnel for %s: %d eligible, %d candidates",
            user_id,
            len(eligible),
            len(candidates),
        )

        # Pairs scored within score_ttl_hours are reused; only the rest go through the batches
        scored: list[tuple[str, CompatibilityBreakdown]] = []
        pending: list[str] = []
        for group_id in candidates:
            stored = await scorer.stored_score(user_id, group_id, now) if reuse_scores else None
            if stored is None:
                pending.append(group_id)
            else:
                scored.append((group_id, stored))

        fresh: list[tuple[str, CompatibilityBreakdown]] = []
        for start in range(0, len(pending), cfg.batch_size):
            batch = pending[start : start + cfg.batch_size]
            outcomes = await asyncio.gather(
                *(self._score_candidate(user_id, gid, user_profile, now) for gid in batch),
                return_exceptions=True,
            )
            for group_id, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.warning(
                        "Compatibility scoring failed for user %s / group %s: %s",
                        user_id,
                        group_id,
                        outcome,
                    )
                    continue
                fresh.append((group_id, outcome))

        for group_id, breakdown in fresh:
            await self._scores.upsert_score(
                user_id, group_id, **breakdown.to_dict(), computed_at=now
            )

        scored.extend(fresh)
        scored.sort(key=lambda item: (-item[1].score, item[0]))
        return [
            {"group_id": group_id, **breakdown.to_dict()}
            for group_id, breakdown in scored[: cfg.recommendation_limit]
        ]

    async def _prefilter(self, user_id: str) -> list[str]:
        cfg = self.settings.compatibility
        joined = await self._groups.get_group_ids_for_user(user_id)
        rejected = await self._scores.get_rejected_group_ids(user_id)

        result = await self.session.execute(
            select(GroupModel.id)
            .where(
                GroupModel.is_solo.is_(False),
                (GroupModel.is_private.is_(False)) | (GroupModel.allow_free_join.is_(True)),
            )
            .order_by(GroupModel.id)
        )
        open_groups = [gid for gid in result.scalars().all() if gid not in joined | rejected]
        if not open_groups:
            return []

        counts = await self._groups.count_members(open_groups)
        sized = [gid for gid in open_groups if counts.get(gid, 0) >= cfg.min_members]

        with_weeks = await self.session.execute(
            select(GroupWeeklyStatsModel.group_id)
            .where(GroupWeeklyStatsModel.group_id.in_(sized))
            .distinct()
        )
        has_stats = set(with_weeks.scalars().all()) | set(await self._all_time.get_many(sized))
        return [gid for gid in sized if gid in has_stats]

    async def _select_candidates(
        self, group_ids: list[str], user_top_artists: set[str]
    ) -> list[str]:
        if not user_top_artists:
            return []
        catalogues = await self._all_time.get_many(group_ids)
        candidates: list[str] = []
        for group_id in group_ids:
            catalogue = catalogues.get(group_id)
            if catalogue is not None and catalogue.top_artists:
                artists = catalogue.top_artists
            else:
                weeks = await self._charts.list_weekly_stats(group_id)
                artists = merge_weekly_lists([w.top_artists or [] for w in weeks])
            if user_top_artists & {item["entry_key"] for item in artists}:
                candidates.append(group_id)
        return candidates

    async def _score_candidate(
        self,
        user_id: str,
        group_id: str,
        user_profile: ListeningProfile,
        now: datetime,
    ) -> CompatibilityBreakdown:
        async with self._session_factory() as session:
            genres = CachedGenreProvider(GenreRepository(session), self._genre_cache)
            service = CompatibilityService(session, genres, self.settings)
            return await service.calculate(user_id, group_id, now, user_profile)

    async def _with_group_names(
        self, recommendations: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        ids = [r["group_id"] for r in recommendations]
        if not ids:
            return []
        result = await self.session.execute(
            select(GroupModel.id, GroupModel.name).where(GroupModel.id.in_(ids))
        )
        names = {gid: name for gid, name in result.all()}
        # Groups deleted since the cache was written just fall out
        return [
            {**r, "group_name": names[r["group_id"]]}
            for r in recommendations
            if r["group_id"] in names
        ]

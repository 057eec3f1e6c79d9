"""
Guide Cache Service

Owns the guide source of each playlist, decides when its cached programs are
stale, and runs the fetch -> parse -> replace cycle.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import session_scope
from app.models import GuideSource
from app.services.db_service import (
    clear_programs,
    delete_expired_programs,
    get_or_create_source,
    get_source_for_playlist,
    record_fetch_outcome,
    store_programs,
)
from app.services.feed_types import GuideParseResult, RefreshOutcome
from app.services.fetch_coordinator import RefreshCoordinator
from app.services.guide_parser_service import fetch_and_parse_guide
from app.utils.logging_helpers import log_refresh_summary, sanitize_url_for_logging
from app.utils.timezone import utc_now


logger = logging.getLogger(__name__)

GuideFetcher = Callable[..., Awaitable[GuideParseResult]]


def is_source_stale(source: GuideSource, now: datetime, staleness_window: timedelta) -> bool:
    """A source is stale when it was never fetched or last fetched before the window."""
    if source.last_fetched is None:
        return True
    return source.last_fetched < now - staleness_window


class GuideCache:
    """Freshness cache of guide programs, one source per playlist."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: httpx.AsyncClient,
        *,
        coordinator: RefreshCoordinator | None = None,
        guide_fetcher: GuideFetcher = fetch_and_parse_guide,
        staleness_window: timedelta | None = None,
        expired_grace: timedelta | None = None,
        future_window: timedelta | None = None,
        parse_timeout_seconds: int | None = None,
        chunk_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._coordinator = coordinator or RefreshCoordinator()
        self._guide_fetcher = guide_fetcher
        self.staleness_window = staleness_window or timedelta(minutes=settings.guide_staleness_minutes)
        self.expired_grace = expired_grace or timedelta(minutes=settings.expired_program_grace_minutes)
        self.future_window = future_window or timedelta(hours=settings.guide_future_window_hours)
        self._parse_timeout = (
            settings.guide_parse_timeout_sec if parse_timeout_seconds is None else parse_timeout_seconds
        )
        self._chunk_size = chunk_size or settings.program_insert_chunk_size

    def is_stale(self, source: GuideSource, now: datetime | None = None) -> bool:
        return is_source_stale(source, now or utc_now(), self.staleness_window)

    async def ensure_fresh(
        self,
        playlist_id: str,
        guide_url: str,
        *,
        now: datetime | None = None
    ) -> RefreshOutcome:
        """
        Make sure the playlist's cached guide is current, refreshing it when stale.

        Args:
            playlist_id: Owning playlist key
            guide_url: Guide address discovered in the playlist
            now: Reference instant, defaults to the current time

        Returns:
            RefreshOutcome; never raises
        """
        return await self._coordinator.execute(
            playlist_id,
            lambda: self._run_cycle(playlist_id, guide_url, now, force=False),
            variant=(guide_url, False),
        )

    async def force_refresh(
        self,
        playlist_id: str,
        guide_url: str,
        *,
        now: datetime | None = None
    ) -> RefreshOutcome:
        """
        Re-pull the guide regardless of staleness.

        Shares the replace logic of ensure_fresh but clears without pruning
        expired programs first. A concurrent non-forced cycle is waited out
        rather than joined.
        """
        return await self._coordinator.execute(
            playlist_id,
            lambda: self._run_cycle(playlist_id, guide_url, now, force=True),
            variant=(guide_url, True),
        )

    async def _run_cycle(
        self,
        playlist_id: str,
        guide_url: str,
        now: datetime | None,
        *,
        force: bool
    ) -> RefreshOutcome:
        now = now or utc_now()
        try:
            return await self._refresh(playlist_id, guide_url, now, force=force)
        except Exception as exc:
            logger.error(
                "Guide refresh for playlist %s failed unexpectedly: %s",
                playlist_id,
                exc,
                exc_info=True,
            )
            source = await self._record_failure(playlist_id, now, str(exc))
            return RefreshOutcome(source=source, refreshed=False, error=str(exc))

    async def _record_failure(self, playlist_id: str, now: datetime, error: str) -> GuideSource | None:
        """Stamp an unexpected cycle failure so the next request waits out the staleness window."""
        try:
            async with session_scope(session_factory=self._session_factory) as session:
                source = await get_source_for_playlist(session, playlist_id)
                if source is None:
                    return None
                return await record_fetch_outcome(session, source, fetched_at=now, fetch_error=error)
        except SQLAlchemyError as exc:
            logger.error("Could not record failed guide refresh for playlist %s: %s", playlist_id, exc)
            return None

    async def _refresh(
        self,
        playlist_id: str,
        guide_url: str,
        now: datetime,
        *,
        force: bool
    ) -> RefreshOutcome:
        async with session_scope(session_factory=self._session_factory) as session:
            source = await get_or_create_source(session, playlist_id, guide_url, now)

        if not force and not self.is_stale(source, now):
            logger.debug(
                "Guide for playlist %s is fresh (last fetched %s)",
                playlist_id,
                source.last_fetched.isoformat() if source.last_fetched else "never",
            )
            return RefreshOutcome(source=source, refreshed=False)

        logger.info(
            "%s guide for playlist %s from %s",
            "Force-refreshing" if force else "Refreshing stale",
            playlist_id,
            sanitize_url_for_logging(guide_url),
        )
        result = await self._guide_fetcher(
            self._client,
            guide_url,
            now=now,
            future_window=self.future_window,
            parse_timeout_seconds=self._parse_timeout,
        )

        if result.failed:
            error = "; ".join(result.errors)
            # Stamped like a fetch so repeat requests wait out the staleness window
            async with session_scope(session_factory=self._session_factory) as session:
                source = await record_fetch_outcome(session, source, fetched_at=now, fetch_error=error)
            logger.warning("Guide refresh for playlist %s failed: %s", playlist_id, error)
            return RefreshOutcome(source=source, refreshed=False, error=error, warnings=list(result.errors))

        # Prune, clear, insert and stamp commit together or not at all
        async with session_scope(session_factory=self._session_factory) as session:
            pruned = 0
            if not force:
                pruned = await delete_expired_programs(session, now - self.expired_grace, source.id)
            cleared = await clear_programs(session, source.id)
            inserted = await store_programs(session, source.id, result.programs, self._chunk_size)
            source = await record_fetch_outcome(
                session,
                source,
                fetched_at=now,
                etag=result.etag,
                last_modified=result.last_modified,
            )

        log_refresh_summary(logger, playlist_id, pruned, cleared, inserted)
        if result.errors:
            logger.info(
                "Guide refresh for playlist %s skipped %s malformed programs",
                playlist_id,
                len(result.errors),
            )

        return RefreshOutcome(
            source=source,
            refreshed=True,
            program_count=inserted,
            warnings=list(result.errors),
        )


async def prune_expired_programs(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    now: datetime | None = None,
    grace: timedelta | None = None
) -> int:
    """
    Delete expired programs of every source.

    Args:
        session_factory: Defaults to the application session factory
        now: Reference instant, defaults to the current time
        grace: How long after their end programs are kept

    Returns:
        Number of deleted programs
    """
    now = now or utc_now()
    grace = grace or timedelta(minutes=settings.expired_program_grace_minutes)
    async with session_scope(session_factory=session_factory) as session:
        return await delete_expired_programs(session, now - grace)

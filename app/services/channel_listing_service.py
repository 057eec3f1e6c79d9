"""
Channel Listing Service

Runs the per-request pipeline: parse the playlist, keep its guide cache
current, resolve now/next and attach it to the channels.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import session_scope
from app.services.feed_types import EnrichedChannel, NowNext
from app.services.guide_cache_service import GuideCache
from app.services.now_next_service import resolve_now_next
from app.services.playlist_parser_service import filter_channels, parse_playlist
from app.utils.data_merging import collect_guide_channel_ids, merge_guide_data
from app.utils.logging_helpers import sanitize_url_for_logging
from app.utils.timezone import utc_now


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChannelListing:
    channels: list[EnrichedChannel] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    guide_url: str | None = None
    epg_available: bool = False
    epg_error: str | None = None
    epg_last_updated: datetime | None = None
    failed: bool = False


class ChannelListingService:
    """Builds guide-enriched channel listings for playlists."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        guide_cache: GuideCache,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._client = client
        self._guide_cache = guide_cache
        self._session_factory = session_factory

    async def list_channels(
        self,
        playlist_id: str,
        playlist_url: str,
        *,
        search: str | None = None,
        now: datetime | None = None
    ) -> ChannelListing:
        """
        Channels of a playlist with now/next guide data where available.

        Args:
            playlist_id: Playlist key owning the guide cache
            playlist_url: M3U address of the playlist
            search: Optional term matched against channel name and group
            now: Reference instant, defaults to the current time

        Returns:
            ChannelListing; `failed` is set when the playlist yielded no
            channels and at least one error
        """
        now = now or utc_now()
        parse_result = await parse_playlist(self._client, playlist_url)

        if not parse_result.channels and parse_result.errors:
            logger.warning(
                "Playlist %s (%s) produced no channels: %s",
                playlist_id,
                sanitize_url_for_logging(playlist_url),
                "; ".join(parse_result.errors),
            )
            return ChannelListing(warnings=list(parse_result.errors), failed=True)

        channels = filter_channels(parse_result.channels, search)
        listing = ChannelListing(
            warnings=list(parse_result.errors),
            guide_url=parse_result.guide_url,
            epg_available=parse_result.guide_url is not None,
        )

        now_next: dict[str, NowNext] = {}
        if parse_result.guide_url:
            outcome = await self._guide_cache.ensure_fresh(playlist_id, parse_result.guide_url, now=now)
            listing.epg_error = outcome.error

            if outcome.source is not None:
                listing.epg_error = listing.epg_error or outcome.source.fetch_error
                listing.epg_last_updated = outcome.source.last_fetched

                channel_ids = collect_guide_channel_ids(channels)
                if channel_ids:
                    async with session_scope(session_factory=self._session_factory) as session:
                        now_next = await resolve_now_next(session, outcome.source.id, channel_ids, now)

        listing.channels = merge_guide_data(channels, now_next)
        logger.info(
            "Listed %s channels for playlist %s (%s with guide data)",
            len(listing.channels),
            playlist_id,
            len(now_next),
        )
        return listing

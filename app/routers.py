from datetime import timedelta
from typing import Annotated
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_channel_listing_service, get_guide_cache
from app.schemas import (
    ChannelListResponse,
    ChannelProgramsResponse,
    ChannelResponse,
    ErrorDetail,
    NowNextMapResponse,
    NowNextResponse,
    ProgramResponse,
    RefreshRequest,
    RefreshResponse,
)
from app.services.channel_listing_service import ChannelListingService
from app.services.db_service import get_channel_programs, get_source_for_playlist
from app.services.guide_cache_service import GuideCache
from app.services.now_next_service import resolve_now_next
from app.services.playlist_parser_service import group_channels, is_valid_stream_url
from app.services.scheduler_service import prune_scheduler
from app.utils.timezone import DateFormatError, parse_iso8601_to_utc, utc_now


logger = logging.getLogger(__name__)

main_router = APIRouter()

NO_GUIDE_MESSAGE = "No EPG data available for this playlist"


def _bad_request(error: str, details: list[str] | None = None) -> HTTPException:
    return HTTPException(status_code=400, detail=ErrorDetail(error=error, details=details).model_dump())


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    next_run = prune_scheduler.get_next_run_time()

    return {
        "service": "Playlist Guide Service",
        "version": "0.1.0",
        "next_scheduled_sweep": next_run.isoformat() if next_run else None,
        "endpoints": {
            "channels": "/playlists/{playlist_id}/channels?url=... - Channels with now/next guide data",
            "now_next": "/playlists/{playlist_id}/epg/now-next?channel_ids=... - Now/next per guide channel",
            "refresh": "/playlists/{playlist_id}/epg/refresh - Force a guide refresh (POST)",
            "programs": "/playlists/{playlist_id}/epg/programs/{channel_id} - Channel schedule",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check() -> dict:
    """Health check endpoint"""
    next_run = prune_scheduler.get_next_run_time()
    return {
        "status": "ok",
        "scheduler_running": prune_scheduler.running,
        "next_sweep": next_run.isoformat() if next_run else None
    }


@main_router.get("/playlists/{playlist_id}/channels", response_model=ChannelListResponse)
async def list_channels(
    playlist_id: str,
    listing_service: Annotated[ChannelListingService, Depends(get_channel_listing_service)],
    url: Annotated[str, Query(description="M3U playlist address")],
    search: Annotated[str | None, Query(description="Filter on channel name or group")] = None,
    grouped: Annotated[bool, Query(description="Also return the channels keyed by group")] = False,
) -> ChannelListResponse:
    """
    Parse a playlist and return its channels with now/next guide data

    The guide cache of the playlist is refreshed first when it is stale.
    """
    if not is_valid_stream_url(url):
        raise _bad_request("url must be an absolute HTTP/HTTPS address")

    listing = await listing_service.list_channels(playlist_id, url, search=search)
    if listing.failed:
        raise _bad_request("Failed to parse M3U file", listing.warnings)

    channels = [ChannelResponse.from_enriched(entry) for entry in listing.channels]
    return ChannelListResponse(
        channels=channels,
        total=len(channels),
        epg_available=listing.epg_available,
        epg_url=listing.guide_url,
        epg_error=listing.epg_error,
        epg_last_updated=listing.epg_last_updated,
        warnings=listing.warnings or None,
        groups=group_channels(channels) if grouped else None,
    )


@main_router.get("/playlists/{playlist_id}/epg/now-next", response_model=NowNextMapResponse)
async def get_now_next(
    playlist_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    channel_ids: Annotated[str | None, Query(description="Comma-separated guide-channel ids")] = None,
) -> NowNextMapResponse:
    """Now/next programs for the requested guide channels of a playlist"""
    source = await get_source_for_playlist(db, playlist_id)
    if source is None:
        return NowNextMapResponse(message=NO_GUIDE_MESSAGE)

    requested = {item.strip() for item in (channel_ids or "").split(",") if item.strip()}
    # Everything at once would be too expensive
    if not requested:
        raise _bad_request("channel_ids parameter is required")

    now_next = await resolve_now_next(db, source.id, requested, utc_now())
    return NowNextMapResponse(
        programs={
            channel_id: NowNextResponse.from_now_next(entry)
            for channel_id, entry in now_next.items()
        },
        last_updated=source.last_fetched,
    )


@main_router.post("/playlists/{playlist_id}/epg/refresh", response_model=RefreshResponse)
async def refresh_guide(
    playlist_id: str,
    request: RefreshRequest,
    guide_cache: Annotated[GuideCache, Depends(get_guide_cache)],
) -> RefreshResponse:
    """
    Force a guide refresh for a playlist

    Downloads, parses and replaces the stored programs regardless of staleness.
    """
    logger.info("Manual guide refresh triggered via API for playlist %s", playlist_id)
    outcome = await guide_cache.force_refresh(playlist_id, request.epg_url)

    if not outcome.refreshed:
        raise _bad_request("Failed to refresh EPG", outcome.warnings or [outcome.error or "Unknown error"])

    return RefreshResponse(
        message="EPG refreshed successfully",
        program_count=outcome.program_count,
        warnings=outcome.warnings or None,
    )


@main_router.get(
    "/playlists/{playlist_id}/epg/programs/{channel_id}",
    response_model=ChannelProgramsResponse,
)
async def get_programs(
    playlist_id: str,
    channel_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    start: Annotated[str | None, Query(description="ISO8601 window start, defaults to now")] = None,
    end: Annotated[str | None, Query(description="ISO8601 window end, defaults to start + 24h")] = None,
) -> ChannelProgramsResponse:
    """Program schedule of one guide channel within a time window"""
    try:
        start_time = parse_iso8601_to_utc(start) if start else utc_now()
        end_time = parse_iso8601_to_utc(end) if end else start_time + timedelta(hours=24)
    except DateFormatError as e:
        raise _bad_request(str(e))

    if start_time >= end_time:
        raise _bad_request("start must be before end")

    source = await get_source_for_playlist(db, playlist_id)
    if source is None:
        return ChannelProgramsResponse(channel_id=channel_id, message=NO_GUIDE_MESSAGE)

    programs = await get_channel_programs(db, source.id, channel_id, start_time, end_time)
    return ChannelProgramsResponse(
        channel_id=channel_id,
        programs=[ProgramResponse.model_validate(program) for program in programs],
    )

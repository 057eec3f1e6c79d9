"""End-to-end tests for the channel listing pipeline."""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.channel_listing_service import ChannelListingService
from app.services.guide_cache_service import GuideCache
from app.tests.feeds import GUIDE_URL, NOW, PLAYLIST_URL, bbc_guide, mock_client, playlist

pytest_plugins = ("pytest_asyncio",)

PLAYLIST = playlist(
    '#EXTINF:-1 tvg-id="bbc1" group-title="UK",BBC One',
    "http://s.test/bbc1",
    '#EXTINF:-1 tvg-id="itv1" group-title="UK",ITV 1',
    "http://s.test/itv1",
    '#EXTINF:-1 group-title="Music",Radio',
    "http://s.test/radio",
    '#EXTINF:-1 tvg-id="cnn" group-title="News",CNN',
    "http://s.test/cnn",
    '#EXTINF:-1 tvg-id="broken",No URL',
)


def _service(session_factory, client) -> ChannelListingService:
    cache = GuideCache(
        session_factory,
        client,
        staleness_window=timedelta(minutes=60),
        parse_timeout_seconds=0,
    )
    return ChannelListingService(client, cache, session_factory)


@pytest.mark.asyncio
async def test_channels_are_enriched_with_now_next(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    routes = {
        PLAYLIST_URL: httpx.Response(200, text=PLAYLIST),
        GUIDE_URL: httpx.Response(200, text=bbc_guide()),
    }

    async with mock_client(routes) as client:
        listing = await _service(session_factory, client).list_channels("playlist-1", PLAYLIST_URL, now=NOW)

    assert not listing.failed
    assert listing.guide_url == GUIDE_URL
    assert listing.epg_available is True
    assert listing.epg_error is None
    assert listing.epg_last_updated == NOW
    assert listing.warnings == ["Skipped channel without stream URL at line 10"]

    by_name = {entry.channel.name: entry for entry in listing.channels}
    assert list(by_name) == ["BBC One", "ITV 1", "Radio", "CNN"]
    assert by_name["BBC One"].epg.now.title == "A"
    assert by_name["BBC One"].epg.next.title == "B"
    assert by_name["ITV 1"].epg.now.title == "News"
    assert by_name["ITV 1"].epg.next is None
    assert by_name["Radio"].epg is None
    assert by_name["CNN"].epg is None


@pytest.mark.asyncio
async def test_search_filters_channels(session_factory: async_sessionmaker[AsyncSession]) -> None:
    routes = {
        PLAYLIST_URL: httpx.Response(200, text=PLAYLIST),
        GUIDE_URL: httpx.Response(200, text=bbc_guide()),
    }

    async with mock_client(routes) as client:
        listing = await _service(session_factory, client).list_channels(
            "playlist-1", PLAYLIST_URL, search="news", now=NOW
        )

    assert [entry.channel.name for entry in listing.channels] == ["CNN"]


@pytest.mark.asyncio
async def test_playlist_without_guide_url(session_factory: async_sessionmaker[AsyncSession]) -> None:
    content = playlist('#EXTINF:-1 tvg-id="bbc1",BBC One', "http://s.test/bbc1", header="#EXTM3U")

    async with mock_client({PLAYLIST_URL: httpx.Response(200, text=content)}) as client:
        listing = await _service(session_factory, client).list_channels("playlist-1", PLAYLIST_URL, now=NOW)

    assert listing.epg_available is False
    assert listing.guide_url is None
    assert [entry.epg for entry in listing.channels] == [None]


@pytest.mark.asyncio
async def test_guide_failure_still_lists_channels(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    routes = {
        PLAYLIST_URL: httpx.Response(200, text=PLAYLIST),
        GUIDE_URL: httpx.Response(503),
    }

    async with mock_client(routes) as client:
        listing = await _service(session_factory, client).list_channels("playlist-1", PLAYLIST_URL, now=NOW)

    assert not listing.failed
    assert len(listing.channels) == 4
    assert all(entry.epg is None for entry in listing.channels)
    assert listing.epg_error == "Failed to fetch XMLTV: 503 Service Unavailable"
    assert listing.epg_last_updated == NOW


@pytest.mark.asyncio
async def test_unreachable_playlist_fails(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with mock_client({}) as client:
        listing = await _service(session_factory, client).list_channels("playlist-1", PLAYLIST_URL, now=NOW)

    assert listing.failed
    assert listing.channels == []
    assert listing.warnings == ["Failed to fetch playlist: 404 Not Found"]

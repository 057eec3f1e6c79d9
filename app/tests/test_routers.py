"""API tests running the FastAPI app against fake feeds and a temporary database."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_db
from app.dependencies import get_service_locator, reset_service_locator
from app.main import app
from app.services.channel_listing_service import ChannelListingService
from app.services.guide_cache_service import GuideCache
from app.tests.feeds import GUIDE_URL, PLAYLIST_URL, bbc_guide, mock_client, playlist
from app.utils.timezone import utc_now

pytest_plugins = ("pytest_asyncio",)

PLAYLIST = playlist(
    '#EXTINF:-1 tvg-id="bbc1" group-title="UK",BBC One',
    "http://s.test/bbc1",
    '#EXTINF:-1 group-title="Music",Radio',
    "http://s.test/radio",
)


@pytest.fixture
def feeds() -> dict:
    return {}


@pytest_asyncio.fixture
async def api(
    session_factory: async_sessionmaker[AsyncSession],
    feeds: dict,
) -> AsyncIterator[httpx.AsyncClient]:
    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    async with mock_client(feeds) as upstream:
        guide_cache = GuideCache(session_factory, upstream, parse_timeout_seconds=0)
        locator = get_service_locator()
        locator.register_singleton(GuideCache, guide_cache)
        locator.register_singleton(
            ChannelListingService,
            ChannelListingService(upstream, guide_cache, session_factory),
        )
        app.dependency_overrides[get_db] = override_get_db

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client

    app.dependency_overrides.clear()
    reset_service_locator()


@pytest.mark.asyncio
async def test_health(api: httpx.AsyncClient) -> None:
    response = await api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["scheduler_running"] is False


@pytest.mark.asyncio
async def test_list_channels_with_now_next(api: httpx.AsyncClient, feeds: dict) -> None:
    feeds[PLAYLIST_URL] = httpx.Response(200, text=PLAYLIST)
    feeds[GUIDE_URL] = httpx.Response(200, text=bbc_guide(utc_now()))

    response = await api.get("/playlists/playlist-1/channels", params={"url": PLAYLIST_URL})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["total"] == 2
    assert body["epg_available"] is True
    assert body["epg_url"] == GUIDE_URL
    assert body["epg_last_updated"] is not None
    bbc, radio = body["channels"]
    assert bbc["tvg_id"] == "bbc1"
    assert bbc["epg"]["now"]["title"] == "A"
    assert bbc["epg"]["next"]["title"] == "B"
    assert radio["epg"] is None


@pytest.mark.asyncio
async def test_list_channels_grouped(api: httpx.AsyncClient, feeds: dict) -> None:
    feeds[PLAYLIST_URL] = httpx.Response(200, text=PLAYLIST)
    feeds[GUIDE_URL] = httpx.Response(200, text=bbc_guide(utc_now()))

    plain = await api.get("/playlists/playlist-1/channels", params={"url": PLAYLIST_URL})
    grouped = await api.get("/playlists/playlist-1/channels", params={"url": PLAYLIST_URL, "grouped": "true"})

    assert plain.json()["groups"] is None
    body = grouped.json()
    assert list(body["groups"]) == ["UK", "Music"]
    assert [c["name"] for c in body["groups"]["UK"]] == ["BBC One"]
    assert body["groups"]["UK"][0]["epg"]["now"]["title"] == "A"
    assert [c["name"] for c in body["groups"]["Music"]] == ["Radio"]
    assert body["total"] == 2


@pytest.mark.asyncio
async def test_list_channels_rejects_bad_url(api: httpx.AsyncClient) -> None:
    response = await api.get("/playlists/playlist-1/channels", params={"url": "ftp://nowhere"})

    assert response.status_code == 400
    assert response.json()["detail"]["success"] is False


@pytest.mark.asyncio
async def test_list_channels_playlist_failure(api: httpx.AsyncClient) -> None:
    response = await api.get("/playlists/playlist-1/channels", params={"url": PLAYLIST_URL})

    assert response.status_code == 400
    assert response.json()["detail"] == {
        "success": False,
        "error": "Failed to parse M3U file",
        "details": ["Failed to fetch playlist: 404 Not Found"],
    }


@pytest.mark.asyncio
async def test_now_next_without_guide_source(api: httpx.AsyncClient) -> None:
    response = await api.get("/playlists/unknown/epg/now-next", params={"channel_ids": "bbc1"})

    assert response.status_code == 200
    assert response.json()["programs"] == {}
    assert response.json()["message"] == "No EPG data available for this playlist"


@pytest.mark.asyncio
async def test_refresh_then_query(api: httpx.AsyncClient, feeds: dict) -> None:
    now = utc_now()
    feeds[GUIDE_URL] = httpx.Response(200, text=bbc_guide(now))

    refresh = await api.post("/playlists/playlist-1/epg/refresh", json={"epg_url": GUIDE_URL})
    assert refresh.status_code == 200
    assert refresh.json()["program_count"] == 3

    now_next = await api.get("/playlists/playlist-1/epg/now-next", params={"channel_ids": "bbc1, cnn"})
    assert now_next.status_code == 200
    programs = now_next.json()["programs"]
    assert set(programs) == {"bbc1"}
    assert programs["bbc1"]["now"]["title"] == "A"
    assert programs["bbc1"]["next"]["title"] == "B"

    missing_ids = await api.get("/playlists/playlist-1/epg/now-next")
    assert missing_ids.status_code == 400

    hour = now.replace(minute=0, second=0, microsecond=0)
    schedule = await api.get(
        "/playlists/playlist-1/epg/programs/bbc1",
        params={"start": hour.isoformat(), "end": (hour + timedelta(hours=3)).isoformat()},
    )
    assert schedule.status_code == 200
    assert [p["title"] for p in schedule.json()["programs"]] == ["A", "B"]


@pytest.mark.asyncio
async def test_refresh_failure_is_reported(api: httpx.AsyncClient, feeds: dict) -> None:
    feeds[GUIDE_URL] = httpx.Response(500)

    response = await api.post("/playlists/playlist-1/epg/refresh", json={"epg_url": GUIDE_URL})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "Failed to refresh EPG"
    assert response.json()["detail"]["details"] == ["Failed to fetch XMLTV: 500 Internal Server Error"]


@pytest.mark.asyncio
async def test_refresh_rejects_non_http_url(api: httpx.AsyncClient) -> None:
    response = await api.post("/playlists/playlist-1/epg/refresh", json={"epg_url": "file:///etc/passwd"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_programs_rejects_bad_window(api: httpx.AsyncClient) -> None:
    bad_format = await api.get("/playlists/playlist-1/epg/programs/bbc1", params={"start": "yesterday"})
    reversed_window = await api.get(
        "/playlists/playlist-1/epg/programs/bbc1",
        params={"start": "2024-01-02T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
    )

    assert bad_format.status_code == 400
    assert reversed_window.status_code == 400

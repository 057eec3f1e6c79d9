"""Tests for now/next resolution."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import session_scope
from app.services.db_service import get_or_create_source, store_programs
from app.services.feed_types import ProgramPayload
from app.services.now_next_service import resolve_now_next, select_now_next
from app.tests.feeds import GUIDE_URL, NOW

pytest_plugins = ("pytest_asyncio",)

HOUR = NOW.replace(minute=0)


def _program(channel_id: str, start_offset_min: int, duration_min: int, title: str) -> ProgramPayload:
    start = HOUR + timedelta(minutes=start_offset_min)
    return ProgramPayload(
        channel_id=channel_id,
        title=title,
        start_time=start,
        end_time=start + timedelta(minutes=duration_min),
    )


def test_now_and_next_for_a_channel() -> None:
    programs = [_program("bbc1", 60, 60, "B"), _program("bbc1", 0, 60, "A")]

    result = select_now_next(programs, NOW)

    assert result["bbc1"].now.title == "A"
    assert result["bbc1"].next.title == "B"


def test_next_is_the_earliest_upcoming_program() -> None:
    programs = [
        _program("bbc1", 180, 30, "Later"),
        _program("bbc1", 120, 60, "Soonest"),
        _program("bbc1", 240, 30, "Latest"),
    ]

    result = select_now_next(programs, NOW)

    assert result["bbc1"].now is None
    assert result["bbc1"].next.title == "Soonest"


def test_overlapping_programs_keep_the_earliest_start_as_now() -> None:
    programs = [
        _program("bbc1", 15, 60, "Overlap"),
        _program("bbc1", 0, 60, "First"),
        _program("bbc1", 90, 30, "After"),
    ]

    result = select_now_next(programs, NOW)

    assert result["bbc1"].now.title == "First"
    assert result["bbc1"].next.title == "After"


def test_program_ending_at_now_is_not_current() -> None:
    programs = [_program("bbc1", -30, 60, "Ends at now"), _program("bbc1", 30, 30, "Starts at now")]

    result = select_now_next(programs, NOW)

    assert result["bbc1"].now.title == "Starts at now"
    assert result["bbc1"].next is None


def test_channels_without_matches_are_absent() -> None:
    programs = [_program("bbc1", -120, 60, "Over"), _program("itv1", 0, 60, "Live")]

    result = select_now_next(programs, NOW)

    assert set(result) == {"itv1"}
    assert result["itv1"].now.title == "Live"
    assert result["itv1"].next is None


@pytest.mark.asyncio
async def test_resolve_now_next_reads_stored_programs(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_scope(session_factory=session_factory) as session:
        source = await get_or_create_source(session, "playlist-1", GUIDE_URL, NOW)
        await store_programs(
            session,
            source.id,
            [
                _program("bbc1", -60, 60, "Earlier"),
                _program("bbc1", 0, 60, "A"),
                _program("bbc1", 60, 60, "B"),
                _program("bbc1", 120, 60, "C"),
                _program("itv1", 0, 60, "Not requested"),
            ],
        )

    async with session_scope(session_factory=session_factory) as session:
        result = await resolve_now_next(session, source.id, {"bbc1", "cnn"}, NOW)

    assert set(result) == {"bbc1"}
    assert result["bbc1"].now.title == "A"
    assert result["bbc1"].next.title == "B"
    assert result["bbc1"].now.start_time == HOUR


@pytest.mark.asyncio
async def test_resolve_now_next_requires_channel_ids(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_scope(session_factory=session_factory) as session:
        with pytest.raises(ValueError):
            await resolve_now_next(session, "source", set(), NOW)

"""
Database operations for guide data

This module contains all database operations for guide sources and programs.
"""
import logging
from collections.abc import Collection, Sequence
from datetime import datetime
from time import perf_counter
from uuid import uuid4

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import GuideSource, Program
from app.services.feed_types import ProgramPayload
from app.utils.timezone import utc_now


logger = logging.getLogger(__name__)


async def get_source_for_playlist(db: AsyncSession, playlist_id: str) -> GuideSource | None:
    """
    Get the guide source bound to a playlist.

    Args:
        db: Database session
        playlist_id: Owning playlist key

    Returns:
        The source row, or None when the playlist never advertised a guide feed
    """
    result = await db.execute(
        select(GuideSource).where(GuideSource.playlist_id == playlist_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_source(
    db: AsyncSession,
    playlist_id: str,
    guide_url: str,
    now: datetime | None = None
) -> GuideSource:
    """
    Get or create the guide source for a playlist.

    A source whose stored URL differs from guide_url is rebound to the new
    address and its freshness state reset to never fetched.

    Args:
        db: Database session
        playlist_id: Owning playlist key
        guide_url: Guide feed address discovered in the playlist
        now: Timestamp for created_at/updated_at

    Returns:
        The current source row
    """
    now = now or utc_now()
    source = await get_source_for_playlist(db, playlist_id)

    if source is None:
        source = GuideSource(
            id=str(uuid4()),
            playlist_id=playlist_id,
            guide_url=guide_url,
            created_at=now,
            updated_at=now,
        )
        db.add(source)
        await db.flush()
        logger.info("Created guide source %s for playlist %s", source.id, playlist_id)
        return source

    if source.guide_url != guide_url:
        logger.info(
            "Guide URL changed for playlist %s - rebinding source %s and resetting freshness",
            playlist_id,
            source.id,
        )
        source.guide_url = guide_url
        source.last_fetched = None
        source.fetch_error = None
        source.etag = None
        source.last_modified = None
        source.updated_at = now
        await db.flush()

    return source


async def record_fetch_outcome(
    db: AsyncSession,
    source: GuideSource,
    *,
    fetched_at: datetime,
    fetch_error: str | None = None,
    etag: str | None = None,
    last_modified: str | None = None
) -> GuideSource:
    """
    Stamp a fetch attempt on the source, successful or not.

    Args:
        db: Database session
        source: Source row (attached to db or detached; it is merged)
        fetched_at: When the attempt finished
        fetch_error: Failure reason, None on success
        etag: Cache validator from the guide response
        last_modified: Cache validator from the guide response

    Returns:
        The session-bound source row
    """
    source = await db.merge(source)
    source.last_fetched = fetched_at
    source.fetch_error = fetch_error
    source.etag = etag
    source.last_modified = last_modified
    source.updated_at = fetched_at
    await db.flush()
    return source


async def delete_expired_programs(
    db: AsyncSession,
    cutoff_time: datetime,
    source_id: str | None = None
) -> int:
    """
    Delete programs that ended before the cutoff.

    Args:
        db: Database session
        cutoff_time: Delete programs with end_time before this
        source_id: Restrict to one source; None sweeps every source

    Returns:
        Number of deleted programs
    """
    stmt = delete(Program).where(Program.end_time < cutoff_time).execution_options(
        synchronize_session=False
    )
    if source_id is not None:
        stmt = stmt.where(Program.source_id == source_id)

    result = await db.execute(stmt)
    deleted_count = result.rowcount or 0

    logger.info("Deleted %s expired programs (end_time < %s)", deleted_count, cutoff_time.isoformat())
    return deleted_count


async def clear_programs(db: AsyncSession, source_id: str) -> int:
    """
    Delete every program of a source.

    Args:
        db: Database session
        source_id: Guide source id

    Returns:
        Number of deleted programs
    """
    result = await db.execute(
        delete(Program)
        .where(Program.source_id == source_id)
        .execution_options(synchronize_session=False)
    )
    deleted_count = result.rowcount or 0
    logger.debug("Cleared %s programs of source %s", deleted_count, source_id)
    return deleted_count


async def store_programs(
    db: AsyncSession,
    source_id: str,
    programs: Sequence[ProgramPayload],
    chunk_size: int = 500
) -> int:
    """
    Bulk insert programs for a source in chunks.

    Args:
        db: Database session
        source_id: Owning guide source id
        programs: Parsed program payloads
        chunk_size: Rows per executemany batch

    Returns:
        Number of programs inserted
    """
    program_list = list(programs)
    if not program_list:
        logger.debug("No programs to store")
        return 0

    total_programs = len(program_list)
    logger.info("Storing %s programs for source %s", total_programs, source_id)

    now = utc_now()
    inserted_count = 0
    chunk_number = 0
    for start_index in range(0, total_programs, chunk_size):
        chunk_number += 1
        loop_start = perf_counter()

        chunk = program_list[start_index:start_index + chunk_size]
        payload = [
            {
                "id": str(uuid4()),
                "source_id": source_id,
                "channel_id": program.channel_id,
                "title": program.title,
                "description": program.description,
                "start_time": program.start_time,
                "end_time": program.end_time,
                "category": program.category,
                "icon_url": program.icon_url,
                "created_at": now,
            }
            for program in chunk
        ]

        await db.execute(insert(Program), payload)
        inserted_count += len(payload)

        logger.debug(
            "Chunk %s persisted: payload=%s, total_time=%.2fs",
            chunk_number,
            len(payload),
            perf_counter() - loop_start,
        )

    logger.info("Program store complete: %s inserted", inserted_count)
    return inserted_count


async def get_upcoming_programs(
    db: AsyncSession,
    source_id: str,
    channel_ids: Collection[str],
    now: datetime
) -> list[Program]:
    """
    Programs of the given channels that have not ended yet.

    Args:
        db: Database session
        source_id: Guide source id
        channel_ids: Guide-channel ids to include
        now: Reference instant

    Returns:
        Program rows ordered by (channel_id, start_time)
    """
    stmt = (
        select(Program)
        .where(
            Program.source_id == source_id,
            Program.channel_id.in_(list(channel_ids)),
            Program.end_time > now,
        )
        .order_by(Program.channel_id, Program.start_time)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_channel_programs(
    db: AsyncSession,
    source_id: str,
    channel_id: str,
    start_time: datetime,
    end_time: datetime
) -> list[Program]:
    """
    Programs of one channel overlapping [start_time, end_time).

    Args:
        db: Database session
        source_id: Guide source id
        channel_id: Guide-channel id
        start_time: Window start
        end_time: Window end

    Returns:
        Program rows ordered by start_time
    """
    stmt = (
        select(Program)
        .where(
            Program.source_id == source_id,
            Program.channel_id == channel_id,
            Program.start_time < end_time,
            Program.end_time > start_time,
        )
        .order_by(Program.start_time)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())

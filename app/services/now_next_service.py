"""
Now/Next Service

Resolves the currently airing and the upcoming program of each requested
guide channel.
"""
from collections.abc import Collection, Iterable
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Program
from app.services.db_service import get_upcoming_programs
from app.services.feed_types import NowNext
from app.utils.timezone import utc_now

logger = logging.getLogger(__name__)


async def resolve_now_next(
    db: AsyncSession,
    source_id: str,
    channel_ids: Collection[str],
    now: datetime | None = None
) -> dict[str, NowNext]:
    """
    Get now/next programs for a set of guide channels

    Args:
        db: Database session
        source_id: Guide source the programs belong to
        channel_ids: Non-empty set of guide-channel ids
        now: Reference instant, defaults to the current time

    Returns:
        Mapping of channel id to its now/next pair; channels without
        current or upcoming programs are absent

    Raises:
        ValueError: If channel_ids is empty
    """
    if not channel_ids:
        raise ValueError("channel_ids must not be empty")

    now = now or utc_now()
    programs = await get_upcoming_programs(db, source_id, channel_ids, now)
    result = select_now_next(programs, now)

    logger.debug(
        f"Now/next for source {source_id}: {len(result)} of {len(channel_ids)} channels matched "
        f"({len(programs)} candidate programs)"
    )
    return result


def select_now_next(programs: Iterable[Program], now: datetime) -> dict[str, NowNext]:
    """
    Pick now/next per channel from candidate programs

    Per channel, the first program covering now ([start, end)) becomes now and
    the first program starting after now becomes next, ending that channel's scan.
    """
    result: dict[str, NowNext] = {}

    for program in sorted(programs, key=lambda p: (p.channel_id, p.start_time)):
        entry = result.get(program.channel_id)
        if entry is not None and entry.next is not None:
            continue

        if program.start_time <= now < program.end_time:
            if entry is None:
                entry = result[program.channel_id] = NowNext()
            if entry.now is None:
                entry.now = program
        elif program.start_time > now:
            if entry is None:
                entry = result[program.channel_id] = NowNext()
            entry.next = program

    return result

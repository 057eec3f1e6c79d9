"""
Data merging utilities

This module attaches resolved guide data to parsed playlist channels.
"""
import logging
from collections.abc import Mapping, Sequence

from app.services.feed_types import Channel, EnrichedChannel, NowNext

logger = logging.getLogger(__name__)


def collect_guide_channel_ids(channels: Sequence[Channel]) -> set[str]:
    """
    Guide-channel ids actually present in a channel list.

    Args:
        channels: Parsed playlist channels

    Returns:
        Set of non-empty tvg ids
    """
    return {channel.tvg_id for channel in channels if channel.tvg_id}


def merge_guide_data(
    channels: Sequence[Channel],
    now_next: Mapping[str, NowNext]
) -> list[EnrichedChannel]:
    """
    Attach now/next guide data to channels.

    Only channels carrying a tvg id are looked up; every other channel is
    returned without guide data whatever the mapping contains.

    Args:
        channels: Parsed playlist channels, in playlist order
        now_next: Mapping of guide-channel id to now/next pair

    Returns:
        One enriched record per channel, in the same order
    """
    merged = [
        EnrichedChannel(
            channel=channel,
            epg=now_next.get(channel.tvg_id) if channel.tvg_id else None,
        )
        for channel in channels
    ]

    logger.debug(
        "Merged guide data into %s of %s channels",
        sum(1 for entry in merged if entry.epg is not None),
        len(merged),
    )
    return merged

"""
Playlist Parser Service

Turns an M3U playlist feed into channel descriptors plus the guide feed
address advertised in its header.
"""
import logging
import re
from typing import Protocol, TypeVar
from urllib.parse import urlsplit

import httpx

from app.errors import EntryFailure, FeedError, FormatFailure
from app.services.feed_types import Channel, ParseResult
from app.utils.file_operations import fetch_text
from app.utils.logging_helpers import sanitize_url_for_logging

logger = logging.getLogger(__name__)

HEADER_TOKEN = "#EXTM3U"
METADATA_TOKEN = "#EXTINF"

# Both spellings are seen in the wild; url-tvg is the common one
GUIDE_URL_ATTRIBUTES = ("url-tvg", "x-tvg-url")

_ATTRIBUTE_RE = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')

UNGROUPED_LABEL = "Uncategorized"


class Grouped(Protocol):
    group: str | None


G = TypeVar("G", bound=Grouped)


async def parse_playlist(client: httpx.AsyncClient, url: str) -> ParseResult:
    """
    Fetch and parse an M3U playlist

    Never raises for feed problems: a failed fetch or a missing header yields
    an empty channel list with a single error so callers can degrade.

    Args:
        client: Shared HTTP client
        url: Playlist address

    Returns:
        ParseResult with channels, per-entry warnings and the guide address
    """
    try:
        content = await fetch_text(client, url, kind="playlist")
    except FeedError as e:
        return ParseResult(errors=(str(e),))

    result = parse_playlist_content(content)
    logger.info(
        f"Parsed playlist {sanitize_url_for_logging(url)}: {len(result.channels)} channels, "
        f"{len(result.errors)} warnings, guide feed {'present' if result.guide_url else 'absent'}"
    )
    return result


def parse_playlist_content(content: str) -> ParseResult:
    """
    Parse M3U text already held in memory

    A malformed entry is dropped with a warning naming its line; parsing
    always continues with the next entry.
    """
    lines = content.lstrip("\ufeff").splitlines()

    header_index = next((i for i, line in enumerate(lines) if line.strip()), None)
    if header_index is None or not lines[header_index].strip().startswith(HEADER_TOKEN):
        error = str(FormatFailure(f"Invalid playlist: missing {HEADER_TOKEN} header"))
        logger.warning(error)
        return ParseResult(errors=(error,))

    guide_url = extract_guide_url(lines[header_index])

    channels: list[Channel] = []
    errors: list[str] = []
    pending: dict[str, str | None] | None = None
    pending_line = 0

    for line_number, raw_line in enumerate(lines[header_index + 1:], start=header_index + 2):
        line = raw_line.strip()

        # Skip empty lines and comments (except EXTINF)
        if not line or (line.startswith("#") and not line.startswith(METADATA_TOKEN)):
            continue

        if line.startswith(METADATA_TOKEN):
            if pending is not None:
                errors.append(f"Skipped channel without stream URL at line {pending_line}")
            pending = parse_metadata_line(line)
            pending_line = line_number
            continue

        try:
            channels.append(_complete_channel(pending, line, line_number))
        except EntryFailure as e:
            errors.append(str(e))
        pending = None

    if pending is not None:
        errors.append(f"Skipped channel without stream URL at line {pending_line}")

    if errors:
        logger.debug(f"Playlist parse produced {len(errors)} warnings: {errors[:5]}")

    return ParseResult(channels=tuple(channels), errors=tuple(errors), guide_url=guide_url)


def _complete_channel(pending: dict[str, str | None] | None, line: str, line_number: int) -> Channel:
    """Pair pending metadata with the stream address that follows it"""
    if pending is None:
        raise EntryFailure(f"Skipped stream URL without channel metadata at line {line_number}")
    if not is_valid_stream_url(line):
        raise EntryFailure(f"Skipped channel with invalid stream URL at line {line_number}")
    if not pending["name"]:
        raise EntryFailure(f"Skipped channel with missing name at line {line_number}")

    return Channel(
        name=pending["name"],
        url=line,
        logo=pending["logo"],
        group=pending["group"],
        tvg_id=pending["tvg_id"],
    )


def extract_guide_url(header_line: str) -> str | None:
    """Return the guide feed address carried by the playlist header, if any"""
    for attribute in GUIDE_URL_ATTRIBUTES:
        match = re.search(rf'{re.escape(attribute)}="([^"]*)"', header_line, re.IGNORECASE)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def parse_metadata_line(line: str) -> dict[str, str | None]:
    """
    Extract channel metadata from an #EXTINF line

    Format: #EXTINF:-1 tvg-id="..." tvg-logo="..." group-title="...",Channel Name
    """
    _, comma, name = line.rpartition(",")
    attributes = {key.lower(): value.strip() for key, value in _ATTRIBUTE_RE.findall(line)}

    return {
        "name": name.strip() if comma else None,
        "tvg_id": attributes.get("tvg-id") or None,
        "logo": attributes.get("tvg-logo") or None,
        "group": attributes.get("group-title") or None,
    }


def is_valid_stream_url(value: str) -> bool:
    """Only absolute http(s) addresses are playable"""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.netloc)


def filter_channels(channels: list[Channel] | tuple[Channel, ...], search_term: str | None) -> list[Channel]:
    """Filter channels by a case-insensitive term matched against name and group"""
    if not search_term:
        return list(channels)

    term = search_term.lower()
    return [
        channel for channel in channels
        if term in channel.name.lower() or (channel.group and term in channel.group.lower())
    ]


def group_channels(channels: list[G] | tuple[G, ...]) -> dict[str, list[G]]:
    """Group channels by their group label, keeping playlist order within each group"""
    groups: dict[str, list[G]] = {}
    for channel in channels:
        groups.setdefault(channel.group or UNGROUPED_LABEL, []).append(channel)
    return groups

"""
Structured logging helpers for consistent log formatting.
"""
import logging
from urllib.parse import urlsplit, urlunsplit


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials and query string from URL for safe logging.

    Playlist providers commonly embed usernames, passwords or tokens in
    either place.
    """
    if "://" not in url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***:***@" + netloc.rsplit("@", 1)[1]
    query = "***" if parts.query else ""
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))


def log_refresh_summary(
    logger: logging.Logger,
    playlist_id: str,
    pruned: int,
    cleared: int,
    inserted: int
) -> None:
    """
    Log the replace step of a guide refresh.

    Args:
        logger: Logger instance
        playlist_id: Playlist owning the refreshed source
        pruned: Expired programs removed before clearing
        cleared: Remaining programs removed
        inserted: Freshly parsed programs stored
    """
    logger.info(
        f"Guide refresh for playlist {playlist_id} - pruned: {pruned}, "
        f"cleared: {cleared}, inserted: {inserted}"
    )

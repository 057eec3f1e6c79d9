"""
Feed download utilities

This module handles fetching remote feeds and temporary file cleanup.
Failures are raised as FetchFailure so callers can turn them into error entries.
"""
import logging
import tempfile
from pathlib import Path
from uuid import uuid4

import aiofiles
import httpx

from app.errors import FetchFailure
from app.utils.logging_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)


def _status_failure(kind: str, response: httpx.Response) -> FetchFailure:
    return FetchFailure(
        f"Failed to fetch {kind}: {response.status_code} {response.reason_phrase}".rstrip()
    )


async def fetch_text(client: httpx.AsyncClient, url: str, *, kind: str = "feed") -> str:
    """
    Fetch a text feed into memory

    Args:
        client: Shared HTTP client (carries the request timeout)
        url: Feed address
        kind: Feed label used in error messages

    Returns:
        Decoded response body

    Raises:
        FetchFailure: On non-2xx status or any transport error
    """
    safe_url = sanitize_url_for_logging(url)
    logger.debug(f"Fetching {kind} from {safe_url}")

    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        logger.warning(f"Fetching {kind} from {safe_url} failed: {type(e).__name__}: {e}")
        raise FetchFailure(f"Error fetching {kind}: {type(e).__name__}: {e}") from e

    if not response.is_success:
        logger.warning(f"Fetching {kind} from {safe_url} returned HTTP {response.status_code}")
        raise _status_failure(kind, response)

    return response.text


async def download_file(
    client: httpx.AsyncClient,
    url: str,
    *,
    kind: str = "feed",
    prefix: str = "feed",
) -> tuple[Path, httpx.Headers]:
    """
    Stream a feed to a temporary file

    Nothing is retried; a failed download ends the current fetch cycle.

    Args:
        client: Shared HTTP client (carries the request timeout)
        url: URL to download from
        kind: Feed label used in error messages
        prefix: Temporary file name prefix

    Returns:
        Path to downloaded temporary file and the response headers

    Raises:
        FetchFailure: On non-2xx status or any transport error
    """
    safe_url = sanitize_url_for_logging(url)
    logger.info(f"Downloading {kind} from {safe_url}...")

    temp_file = Path(tempfile.gettempdir()) / f"{prefix}_{uuid4().hex}.xml"
    try:
        async with client.stream("GET", url) as response:
            if not response.is_success:
                logger.error(f"HTTP {response.status_code} while downloading {kind} from {safe_url}")
                raise _status_failure(kind, response)

            size = 0
            async with aiofiles.open(temp_file, 'wb') as f:
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    await f.write(chunk)
            headers = response.headers
    except httpx.HTTPError as e:
        cleanup_temp_file(temp_file)
        logger.error(f"Download of {kind} from {safe_url} failed: {type(e).__name__}: {e}")
        raise FetchFailure(f"Error fetching {kind}: {type(e).__name__}: {e}") from e
    except FetchFailure:
        cleanup_temp_file(temp_file)
        raise

    logger.info(f"Downloaded {size / (1024 * 1024):.2f} MB to {temp_file}")
    return temp_file, headers


def cleanup_temp_file(file_path: Path) -> bool:
    """
    Safely delete a temporary file

    Args:
        file_path: Path to file to delete

    Returns:
        True if deleted successfully, False otherwise
    """
    if not file_path or not file_path.exists():
        return False

    try:
        file_path.unlink()
        logger.debug(f"Cleaned up temporary file: {file_path}")
        return True
    except (OSError, PermissionError) as e:
        logger.warning(f"Failed to delete temporary file {file_path}: {e}")
        return False

"""
Guide Parser Service

Downloads XMLTV guide feeds and turns them into program payloads inside the
near-term ingestion window.
"""
import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

import httpx
from lxml import etree  # type: ignore

from app.errors import EntryFailure, FeedError, FormatFailure
from app.services.feed_types import GuideParseResult, ProgramPayload
from app.utils.file_operations import cleanup_temp_file, download_file
from app.utils.logging_helpers import sanitize_url_for_logging
from app.utils.timezone import parse_xmltv_time, utc_now

logger = logging.getLogger(__name__)

DEFAULT_FUTURE_WINDOW = timedelta(hours=48)

# The three equivalent shapes text content shows up in
TextContent = Union[str, etree._Element, Sequence[Union[str, etree._Element]], None]


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


def parse_guide_file(
    file_path: str,
    now: Optional[datetime] = None,
    future_window: timedelta = DEFAULT_FUTURE_WINDOW
) -> GuideParseResult:
    """
    Parse XMLTV file and return programs inside the ingestion window

    Args:
        file_path: Path to XMLTV file
        now: Reference instant (UTC), defaults to the current time
        future_window: Programs starting later than now + future_window are dropped

    Returns:
        GuideParseResult with programs and per-entry errors
    """
    logger.debug(f"Parsing XMLTV file: {file_path}")

    try:
        root = etree.parse(file_path, parser=_xml_parser()).getroot()
    except (etree.XMLSyntaxError, OSError) as e:
        logger.error(f"  XML parsing error: {e}")
        return GuideParseResult(errors=[f"Error parsing XMLTV: {e}"])

    return _parse_document(root, now or utc_now(), future_window)


def parse_guide_content(
    content: Union[bytes, str],
    now: Optional[datetime] = None,
    future_window: timedelta = DEFAULT_FUTURE_WINDOW
) -> GuideParseResult:
    """Parse XMLTV content already held in memory"""
    if isinstance(content, str):
        content = content.encode("utf-8")

    try:
        root = etree.fromstring(content, parser=_xml_parser())
    except etree.XMLSyntaxError as e:
        logger.error(f"  XML parsing error: {e}")
        return GuideParseResult(errors=[f"Error parsing XMLTV: {e}"])

    return _parse_document(root, now or utc_now(), future_window)


def _parse_document(root: etree._Element, now: datetime, future_window: timedelta) -> GuideParseResult:
    """Extract programs from the XMLTV root element"""
    if root is None or etree.QName(root).localname != "tv":
        error = str(FormatFailure("Invalid XMLTV: missing <tv> root element"))
        logger.warning(error)
        return GuideParseResult(errors=[error])

    result = GuideParseResult()
    max_start = now + future_window
    skipped = 0

    for programme in root.iterchildren("programme"):
        try:
            program = _parse_single_program(programme, now, max_start)
        except (EntryFailure, ValueError, TypeError, AttributeError) as e:
            result.errors.append(f"Failed to parse programme: {e}")
            continue

        if program is None:
            skipped += 1
            continue
        result.programs.append(program)

    logger.info(
        f"XMLTV parsing complete: {len(result.programs)} programs in window, "
        f"{skipped} skipped, {len(result.errors)} errors"
    )
    return result


def _parse_single_program(
    programme: etree._Element,
    now: datetime,
    max_start: datetime
) -> Optional[ProgramPayload]:
    """Parse single programme element, None when it is incomplete or outside the window"""
    # Required fields; incomplete entries are routine in guide feeds
    channel_id = (programme.get('channel') or '').strip()
    start_str = programme.get('start')
    stop_str = programme.get('stop')
    if not channel_id or not start_str or not stop_str:
        return None

    start_time = parse_xmltv_time(start_str)
    end_time = parse_xmltv_time(stop_str)

    # Already over, or too far ahead to matter for now/next
    if end_time <= now or start_time > max_start:
        return None

    title = extract_text(programme.findall('title'))
    if title is None:
        return None

    if start_time >= end_time:
        raise EntryFailure(
            f"'{title}' on {channel_id} ends at or before it starts ({start_str} - {stop_str})"
        )

    return ProgramPayload(
        channel_id=channel_id,
        title=title,
        start_time=start_time,
        end_time=end_time,
        description=extract_text(programme.findall('desc')),
        category=extract_text(programme.findall('category')),
        icon_url=_get_icon_url(programme),
    )


def extract_text(value: TextContent) -> Optional[str]:
    """
    Normalize guide text content to a plain string

    Accepts a bare string, an element carrying text, or a sequence whose
    first item is either. Blank text counts as absent.
    """
    if value is None:
        return None

    if isinstance(value, str):
        text = value
    elif isinstance(value, etree._Element):
        text = "".join(value.itertext())
    elif isinstance(value, Sequence):
        return extract_text(value[0]) if len(value) else None
    else:
        return None

    text = text.strip()
    return text or None


def _get_icon_url(programme: etree._Element) -> Optional[str]:
    icon_elem = programme.find('icon')
    if icon_elem is None:
        return None
    return extract_text(icon_elem.get('src'))


async def parse_guide_async(
    file_path: Union[Path, str],
    now: datetime,
    future_window: timedelta = DEFAULT_FUTURE_WINDOW,
    *,
    parse_timeout_seconds: int | None = None
) -> GuideParseResult:
    """
    Parse XMLTV file asynchronously with timeout protection.

    File parsing is offloaded to thread pool to avoid blocking event loop.

    Args:
        file_path: Path to XMLTV file (Path or str)
        now: Reference instant for the ingestion window
        future_window: How far ahead programs are kept

    Keyword Args:
        parse_timeout_seconds: Timeout in seconds for parsing (0/None disables timeout)
    """
    effective_timeout = parse_timeout_seconds if parse_timeout_seconds and parse_timeout_seconds > 0 else None
    timeout_display = f"{effective_timeout}s" if effective_timeout else "disabled"

    loop = asyncio.get_running_loop()
    logger.debug("Offloading XML parsing to thread pool executor (timeout: %s)...", timeout_display)
    parse_task = loop.run_in_executor(
        None,
        parse_guide_file,
        str(file_path),
        now,
        future_window
    )
    try:
        if effective_timeout:
            return await asyncio.wait_for(parse_task, timeout=effective_timeout)
        return await parse_task
    except asyncio.TimeoutError:
        logger.error("XML parsing timed out after %s for %s", timeout_display, file_path)
        return GuideParseResult(errors=[f"XML parsing timed out after {timeout_display}"])


async def fetch_and_parse_guide(
    client: httpx.AsyncClient,
    url: str,
    *,
    now: Optional[datetime] = None,
    future_window: timedelta = DEFAULT_FUTURE_WINDOW,
    parse_timeout_seconds: int | None = None
) -> GuideParseResult:
    """
    Download and parse a guide feed

    Never raises for feed problems: a failed download or an unusable document
    comes back as zero programs and a single error.

    Args:
        client: Shared HTTP client
        url: Guide feed address

    Keyword Args:
        now: Reference instant for the ingestion window, defaults to the current time
        future_window: How far ahead programs are kept
        parse_timeout_seconds: Timeout in seconds for parsing (0/None disables timeout)
    """
    sanitized_url = sanitize_url_for_logging(url)
    temp_file = None
    try:
        try:
            temp_file, headers = await download_file(client, url, kind="XMLTV", prefix="guide")
        except FeedError as e:
            return GuideParseResult(errors=[str(e)])

        logger.info(f"Parsing guide feed from {sanitized_url}...")
        result = await parse_guide_async(
            temp_file,
            now or utc_now(),
            future_window,
            parse_timeout_seconds=parse_timeout_seconds
        )
        result.etag = headers.get("etag")
        result.last_modified = headers.get("last-modified")
        return result
    finally:
        if temp_file:
            cleanup_temp_file(temp_file)

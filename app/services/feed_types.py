"""
Shared dataclasses used across the playlist and guide ingestion pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.models import GuideSource, Program


@dataclass(frozen=True, slots=True)
class Channel:
    """One playable entry of a playlist feed."""
    name: str
    url: str
    logo: str | None = None
    group: str | None = None
    tvg_id: str | None = None


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Outcome of a single playlist parse: channels, per-entry warnings, guide address."""
    channels: tuple[Channel, ...] = ()
    errors: tuple[str, ...] = ()
    guide_url: str | None = None


@dataclass(slots=True)
class ProgramPayload:
    """In-memory representation of a program row before persistence."""
    channel_id: str
    title: str
    start_time: datetime
    end_time: datetime
    description: str | None = None
    category: str | None = None
    icon_url: str | None = None


@dataclass(slots=True)
class GuideParseResult:
    """Outcome of a single guide parse."""
    programs: list[ProgramPayload] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    etag: str | None = None
    last_modified: str | None = None

    @property
    def failed(self) -> bool:
        """Nothing usable came back and at least one reason is known."""
        return not self.programs and bool(self.errors)


@dataclass(slots=True)
class RefreshOutcome:
    """Result of an ensure-fresh or forced refresh cycle for one playlist."""
    source: GuideSource | None
    refreshed: bool
    error: str | None = None
    program_count: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class NowNext:
    """Currently airing and upcoming program of one channel."""
    now: Program | None = None
    next: Program | None = None


@dataclass(slots=True)
class EnrichedChannel:
    """Playlist channel with its optional now/next guide data attached."""
    channel: Channel
    epg: NowNext | None = None


__all__ = [
    "Channel",
    "ParseResult",
    "ProgramPayload",
    "GuideParseResult",
    "RefreshOutcome",
    "NowNext",
    "EnrichedChannel",
]

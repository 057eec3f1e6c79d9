from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.feed_types import EnrichedChannel, NowNext


class ProgramResponse(BaseModel):
    """Single guide program"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel_id: str
    title: str
    description: str | None = None
    start_time: datetime = Field(..., description="UTC start, inclusive")
    end_time: datetime = Field(..., description="UTC end, exclusive")
    category: str | None = None
    icon_url: str | None = None


class NowNextResponse(BaseModel):
    """Currently airing and upcoming program of one channel"""
    now: ProgramResponse | None = None
    next: ProgramResponse | None = None

    @classmethod
    def from_now_next(cls, entry: NowNext) -> "NowNextResponse":
        return cls(
            now=ProgramResponse.model_validate(entry.now) if entry.now else None,
            next=ProgramResponse.model_validate(entry.next) if entry.next else None,
        )


class ChannelResponse(BaseModel):
    """Playlist channel with optional guide data"""
    name: str
    url: str
    logo: str | None = None
    group: str | None = None
    tvg_id: str | None = None
    epg: NowNextResponse | None = None

    @classmethod
    def from_enriched(cls, entry: EnrichedChannel) -> "ChannelResponse":
        channel = entry.channel
        return cls(
            name=channel.name,
            url=channel.url,
            logo=channel.logo,
            group=channel.group,
            tvg_id=channel.tvg_id,
            epg=NowNextResponse.from_now_next(entry.epg) if entry.epg else None,
        )


class ChannelListResponse(BaseModel):
    """Channels of a playlist"""
    success: bool = True
    channels: list[ChannelResponse]
    total: int
    epg_available: bool
    epg_url: str | None = None
    epg_error: str | None = None
    epg_last_updated: datetime | None = None
    warnings: list[str] | None = None
    groups: dict[str, list[ChannelResponse]] | None = None


class NowNextMapResponse(BaseModel):
    """Now/next programs keyed by guide-channel id"""
    success: bool = True
    programs: dict[str, NowNextResponse] = Field(default_factory=dict)
    last_updated: datetime | None = None
    message: str | None = None


class ChannelProgramsResponse(BaseModel):
    """Program schedule of one guide channel"""
    success: bool = True
    channel_id: str
    programs: list[ProgramResponse] = Field(default_factory=list)
    message: str | None = None


class RefreshRequest(BaseModel):
    """Forced guide refresh request"""
    epg_url: str = Field(..., description="Guide feed address to pull")

    @field_validator("epg_url")
    @classmethod
    def validate_epg_url(cls, value: str) -> str:
        """Guide feeds are only fetched over HTTP/HTTPS"""
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"epg_url must be HTTP/HTTPS: {value}")
        return value


class RefreshResponse(BaseModel):
    """Forced guide refresh result"""
    success: bool = True
    message: str
    program_count: int
    warnings: list[str] | None = None


class ErrorDetail(BaseModel):
    """Error payload returned with 4xx responses"""
    success: bool = False
    error: str
    details: list[str] | None = None

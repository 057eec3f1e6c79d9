from pathlib import Path
import logging

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    database_path: str = "./data/guide.db"
    log_level: str = "INFO"
    http_timeout_sec: float = 30.0  # Upper bound for every upstream feed request
    user_agent: str = "playlist-guide-service/0.1"
    guide_staleness_minutes: int = 60  # Cached guide data older than this is refetched
    guide_future_window_hours: int = 48  # Programs starting later than this are not ingested
    expired_program_grace_minutes: int = 60  # Programs ended longer ago than this are pruned
    guide_parse_timeout_sec: int = 120  # XML parsing timeout, 0 disables timeout
    program_insert_chunk_size: int = 500
    prune_cron: str = "30 * * * *"  # Expired-program sweep, empty string disables it
    prune_misfire_grace_sec: int = 600

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        if value == ":memory:":
            return value
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @field_validator("http_timeout_sec")
    @classmethod
    def validate_http_timeout(cls, value: float) -> float:
        """Upstream fetches must always be bounded."""
        if value <= 0:
            raise ValueError("http_timeout_sec must be > 0")
        return value

    @field_validator(
        "guide_staleness_minutes",
        "guide_future_window_hours",
        "expired_program_grace_minutes",
        "program_insert_chunk_size",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure window and batch sizes are positive integers."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("guide_parse_timeout_sec", "prune_misfire_grace_sec")
    @classmethod
    def validate_non_negative_ints(cls, value: int, info) -> int:
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("prune_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid (empty disables the sweep)."""
        value = value.strip()
        if not value:
            return value
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @model_validator(mode="after")
    def validate_window_configuration(self):
        """Validate cross-field configuration."""
        if self.guide_future_window_hours * 60 < self.guide_staleness_minutes:
            logger.warning(
                "Guide future window (%sh) is shorter than the staleness window (%smin) - "
                "now/next data may run out between refreshes",
                self.guide_future_window_hours,
                self.guide_staleness_minutes,
            )
        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Database: %s", self.database_path)
        logger.info("  HTTP Timeout: %ss", self.http_timeout_sec)
        logger.info("  Guide Staleness Window: %s minutes", self.guide_staleness_minutes)
        logger.info("  Guide Future Window: %s hours", self.guide_future_window_hours)
        logger.info("  Expired Program Grace: %s minutes", self.expired_program_grace_minutes)
        logger.info(
            "  Parse Timeout: %s seconds",
            self.guide_parse_timeout_sec or "disabled",
        )
        logger.info("  Program Batch Size: %s", self.program_insert_chunk_size)
        logger.info("  Prune Schedule: %s", self.prune_cron or "disabled")


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

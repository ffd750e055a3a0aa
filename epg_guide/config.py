from pathlib import Path
import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

PROXY_URL_PLACEHOLDER = "{URL}"


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    database_path: str = "./data/epg.db"
    log_level: str = "INFO"

    epg_fetch_timeout_sec: float = 60.0
    epg_parse_timeout_sec: int = 600  # XML parsing timeout, 0 disables timeout
    epg_download_chunk_size: int = 65536
    epg_channel_progress_every: int = 10
    epg_program_progress_every: int = 100
    epg_programs_chunk_size: int = 5000
    epg_progress_queue_size: int = 100
    epg_refresh_misfire_grace_sec: int = 3600  # Allow 1 hour to run missed jobs

    epg_honor_timezone_offset: bool = True
    epg_query_respects_enabled: bool = True
    epg_allow_uncompressed: bool = False

    # Seed values for the persisted EPG settings record
    epg_default_auto_update: bool = True
    epg_default_update_interval_hours: int = 6
    epg_default_use_cors_proxy: bool = False
    epg_default_cors_proxy_url: str = "https://api.allorigins.win/raw?url={URL}"

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
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate log level is a known logging level name."""
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @field_validator("epg_fetch_timeout_sec")
    @classmethod
    def validate_fetch_timeout(cls, value: float) -> float:
        """Validate download timeout (seconds)."""
        if value <= 0:
            raise ValueError("epg_fetch_timeout_sec must be > 0")
        return value

    @field_validator("epg_parse_timeout_sec")
    @classmethod
    def validate_parse_timeout(cls, value: int) -> int:
        """Validate XML parsing timeout (seconds)."""
        if value < 0:
            raise ValueError("epg_parse_timeout_sec must be >= 0")
        return value

    @field_validator(
        "epg_download_chunk_size",
        "epg_channel_progress_every",
        "epg_program_progress_every",
        "epg_programs_chunk_size",
        "epg_progress_queue_size",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure sizes and intervals are positive integers."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("epg_refresh_misfire_grace_sec")
    @classmethod
    def validate_misfire_grace(cls, value: int) -> int:
        """Validate scheduler misfire grace period (seconds)."""
        if value < 0:
            raise ValueError("epg_refresh_misfire_grace_sec must be >= 0")
        return value

    @field_validator("epg_default_update_interval_hours")
    @classmethod
    def validate_update_interval(cls, value: int) -> int:
        """Validate refresh interval is positive and reasonable."""
        if value < 1:
            raise ValueError("epg_default_update_interval_hours must be >= 1")
        if value > 168:
            raise ValueError("epg_default_update_interval_hours must be <= 168 hours")
        return value

    @field_validator("epg_default_cors_proxy_url")
    @classmethod
    def validate_proxy_template(cls, value: str) -> str:
        """Validate the proxy template carries the URL placeholder."""
        if PROXY_URL_PLACEHOLDER not in value:
            raise ValueError(
                f"epg_default_cors_proxy_url must contain the {PROXY_URL_PLACEHOLDER} placeholder"
            )
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"epg_default_cors_proxy_url must be HTTP/HTTPS: {value}")
        return value

    @model_validator(mode="after")
    def validate_epg_configuration(self):
        """Validate cross-field configuration."""
        if self.epg_parse_timeout_sec and self.epg_parse_timeout_sec < self.epg_fetch_timeout_sec / 10:
            logger.warning(
                "Parse timeout (%ss) is very short compared to fetch timeout (%ss)",
                self.epg_parse_timeout_sec,
                self.epg_fetch_timeout_sec,
            )
        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  Database: %s", self.database_path)
        logger.info("  Log Level: %s", self.log_level)
        logger.info("  Fetch Timeout: %s seconds", self.epg_fetch_timeout_sec)
        logger.info(
            "  Parse Timeout: %s seconds",
            self.epg_parse_timeout_sec or "disabled",
        )
        logger.info("  Download Chunk Size: %s bytes", self.epg_download_chunk_size)
        logger.info(
            "  Parser Progress: every %s channels / %s programs",
            self.epg_channel_progress_every,
            self.epg_program_progress_every,
        )
        logger.info("  Refresh Misfire Grace: %ss", self.epg_refresh_misfire_grace_sec)
        logger.info("  Program Batch Size: %s", self.epg_programs_chunk_size)
        logger.info("  Honor XMLTV Timezone Offset: %s", self.epg_honor_timezone_offset)
        logger.info("  Queries Respect Enabled Flag: %s", self.epg_query_respects_enabled)
        logger.info("  Allow Uncompressed Payloads: %s", self.epg_allow_uncompressed)
        logger.info(
            "  Default Auto Update: %s (every %s hours)",
            self.epg_default_auto_update,
            self.epg_default_update_interval_hours,
        )


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

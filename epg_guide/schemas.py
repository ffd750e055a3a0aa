from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from epg_guide.config import PROXY_URL_PLACEHOLDER


class EpgSource(BaseModel):
    """Configured EPG feed with its last refresh outcome"""
    id: str = Field(..., description="Opaque source identifier")
    name: str = Field(..., description="User-facing label")
    url: str = Field(..., description="XMLTV (gzip) document URL")
    enabled: bool = Field(True, description="Disabled sources are skipped by scheduled and bulk refresh")
    last_fetch_at: datetime | None = Field(None, description="Last refresh attempt (UTC)")
    last_success_at: datetime | None = Field(None, description="Last successful refresh (UTC)")
    last_error: str | None = Field(None, description="Message of the last failed refresh")
    channel_count: int = Field(0, description="Channels in the last successful parse")
    program_count: int = Field(0, description="Programs in the last successful parse")
    created_at: datetime | None = Field(None, description="Creation time (UTC)")


class EpgSourceCreate(BaseModel):
    """New source request"""
    name: str = Field(..., description="User-facing label")
    url: str = Field(..., description="XMLTV (gzip) document URL")


class EpgSourceUpdate(BaseModel):
    """Partial source update; only fields that are set are merged"""
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    url: str | None = None
    enabled: bool | None = None
    last_fetch_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    channel_count: int | None = Field(None, ge=0)
    program_count: int | None = Field(None, ge=0)


class EnabledUpdate(BaseModel):
    enabled: bool


class EpgChannel(BaseModel):
    """Channel data model"""
    id: str | None = Field(None, description="XMLTV channel id, unique within one source")
    display_name: str = Field("", description="Name used for fuzzy matching")
    icon: str | None = Field(None, description="URL to channel icon")


class EpgProgram(BaseModel):
    """Program data model"""
    channel_id: str | None = Field(None, description="XMLTV channel id this program belongs to")
    start: datetime | None = Field(None, description="Start time (UTC), null when malformed")
    stop: datetime | None = Field(None, description="Stop time (UTC), null when malformed")
    title: str = ""
    description: str = ""
    category: str = ""
    icon: str | None = None


class EpgSourceData(BaseModel):
    """Stored snapshot of one source"""
    channels: list[EpgChannel]
    programs: list[EpgProgram]
    updated_at: datetime


class EpgSourceDataSummary(BaseModel):
    source_id: str
    channel_count: int
    program_count: int
    updated_at: datetime


class EpgSettings(BaseModel):
    """Runtime refresh and transport settings"""
    auto_update: bool = True
    update_interval_hours: int = Field(6, ge=1, le=168)
    last_auto_update_at: datetime | None = None
    use_cors_proxy: bool = False
    cors_proxy_url_template: str = ""

    @model_validator(mode="after")
    def validate_proxy_template(self):
        """A proxy can only be enabled with a usable template"""
        if self.use_cors_proxy and PROXY_URL_PLACEHOLDER not in self.cors_proxy_url_template:
            raise ValueError(
                f"cors_proxy_url_template must contain {PROXY_URL_PLACEHOLDER} when the proxy is enabled"
            )
        return self


class EpgSettingsUpdate(BaseModel):
    """Partial settings update"""
    model_config = ConfigDict(extra="forbid")

    auto_update: bool | None = None
    update_interval_hours: int | None = Field(None, ge=1, le=168)
    use_cors_proxy: bool | None = None
    cors_proxy_url_template: str | None = None


class ProgramResponse(EpgProgram):
    """Program matched by a channel-name query"""
    channel_name: str = Field(..., description="Display name of the matched EPG channel")
    source_id: str = Field(..., description="Source the program was stored under")


class CurrentProgramResponse(BaseModel):
    program: ProgramResponse | None
    progress: int = Field(0, ge=0, le=100)


class ChannelGuideResponse(BaseModel):
    """Now playing plus the next few programs of a channel"""
    current: ProgramResponse | None
    progress: int = Field(0, ge=0, le=100)
    upcoming: list[ProgramResponse]


class SourceTestRequest(BaseModel):
    url: str = Field(..., description="XMLTV (gzip) document URL to probe")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be empty")
        return v


class SourceTestResult(BaseModel):
    """Outcome of a fetch+parse probe; nothing is persisted"""
    success: bool
    channel_count: int = 0
    program_count: int = 0
    message: str | None = None
    error: str | None = None


class RefreshResult(BaseModel):
    source_id: str
    channel_count: int
    program_count: int


class ErrorDetail(BaseModel):
    """Standard error detail"""
    code: str = Field(..., description="Error code (e.g., 'FETCH_FAILED', 'VALIDATION_ERROR')")
    message: str = Field(..., description="Human-readable error message")
    context: dict | None = Field(None, description="Additional context about the error")


class StandardErrorResponse(BaseModel):
    """Standardized error response for all endpoints"""
    status: str = Field("error", description="Status indicator")
    timestamp: str = Field(..., description="ISO8601 timestamp of error")
    error: ErrorDetail = Field(..., description="Error details")

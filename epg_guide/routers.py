import asyncio
import json
import logging

from fastapi import APIRouter, Query, Response
from fastapi.responses import StreamingResponse

from epg_guide.schemas import (
    ChannelGuideResponse,
    CurrentProgramResponse,
    EnabledUpdate,
    EpgSettings,
    EpgSettingsUpdate,
    EpgSource,
    EpgSourceCreate,
    EpgSourceDataSummary,
    EpgSourceUpdate,
    ProgramResponse,
    RefreshResult,
    SourceTestRequest,
    SourceTestResult,
)
from epg_guide.exceptions import NotFoundError
from epg_guide.services import (
    calculate_progress,
    epg_fetch_service,
    epg_query_service,
    epg_scheduler,
    epg_store_service,
    settings_service,
    source_registry_service,
)
from epg_guide.services.progress import ProgressChannel


logger = logging.getLogger(__name__)

main_router = APIRouter()


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    next_run = epg_scheduler.get_next_run_time()

    return {
        "service": "EPG Guide",
        "version": "0.1.0",
        "next_scheduled_refresh": next_run.isoformat() if next_run else None,
        "endpoints": {
            "sources": "/sources - Manage EPG sources",
            "refresh": "/sources/refresh - Refresh all enabled sources (POST)",
            "programs": "/programs?name= - Programs for a channel name",
            "settings": "/settings - Refresh and transport settings",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check() -> dict:
    """Health check endpoint"""
    next_run = epg_scheduler.get_next_run_time()
    return {
        "status": "ok",
        "scheduler_running": epg_scheduler.scheduler.running if epg_scheduler.scheduler else False,
        "next_refresh": next_run.isoformat() if next_run else None
    }


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@main_router.get("/sources", response_model=list[EpgSource])
async def list_sources() -> list[EpgSource]:
    return await source_registry_service.list_sources()


@main_router.post("/sources", response_model=EpgSource, status_code=201)
async def add_source(request: EpgSourceCreate) -> EpgSource:
    return await source_registry_service.add_source(request.name, request.url)


@main_router.post("/sources/test", response_model=SourceTestResult)
async def test_source(request: SourceTestRequest) -> SourceTestResult:
    """Download and parse a URL without saving anything"""
    return await epg_fetch_service.test_source(request.url)


@main_router.post("/sources/refresh")
async def refresh_all_sources() -> dict:
    """
    Refresh every enabled source

    Failures of individual sources are reported in source_details and do not
    stop the batch.
    """
    logger.info("Manual refresh of all enabled sources triggered via API")
    return await epg_fetch_service.refresh_all_enabled()


@main_router.get("/sources/{source_id}", response_model=EpgSource)
async def get_source(source_id: str) -> EpgSource:
    return await source_registry_service.get_source(source_id)


@main_router.patch("/sources/{source_id}", response_model=EpgSource)
async def update_source(source_id: str, request: EpgSourceUpdate) -> EpgSource:
    return await source_registry_service.update_source(source_id, request)


@main_router.put("/sources/{source_id}/enabled", response_model=EpgSource)
async def set_source_enabled(source_id: str, request: EnabledUpdate) -> EpgSource:
    return await source_registry_service.set_enabled(source_id, request.enabled)


@main_router.delete("/sources/{source_id}", status_code=204)
async def remove_source(source_id: str) -> Response:
    """Delete a source together with its stored EPG data"""
    await source_registry_service.remove_source(source_id)
    return Response(status_code=204)


@main_router.post("/sources/{source_id}/refresh", response_model=RefreshResult)
async def refresh_source(source_id: str) -> RefreshResult:
    logger.info("Manual refresh of source %s triggered via API", source_id)
    parsed = await epg_fetch_service.refresh_source(source_id)
    return RefreshResult(
        source_id=source_id,
        channel_count=len(parsed.channels),
        program_count=len(parsed.programs),
    )


@main_router.get("/sources/{source_id}/refresh/stream")
async def refresh_source_stream(source_id: str) -> StreamingResponse:
    """
    Refresh one source and stream its progress as NDJSON

    The last line has stage 'complete' or 'error'. Closing the connection
    cancels the refresh; nothing is saved in that case.
    """
    source = await source_registry_service.get_source(source_id)
    progress = ProgressChannel()
    subscription = progress.subscribe()
    task = asyncio.create_task(epg_fetch_service.refresh_source(source, progress))
    task.add_done_callback(_log_background_failure)

    async def event_lines():
        try:
            async for event in subscription:
                yield json.dumps(event.to_dict()) + "\n"
        finally:
            subscription.close()
            if not task.done():
                logger.info("Progress stream for source %s closed early; cancelling refresh", source_id)
                task.cancel()

    return StreamingResponse(event_lines(), media_type="application/x-ndjson")


def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Streamed refresh ended with error: %s", exc)


@main_router.get("/sources/{source_id}/data", response_model=EpgSourceDataSummary)
async def get_source_data(source_id: str) -> EpgSourceDataSummary:
    summary = await epg_store_service.get_summary(source_id)
    if summary is None:
        raise NotFoundError(f"No EPG data stored for source {source_id}", context={"source_id": source_id})
    return summary


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@main_router.get("/settings", response_model=EpgSettings)
async def get_settings() -> EpgSettings:
    return await settings_service.get_settings()


@main_router.put("/settings", response_model=EpgSettings)
async def update_settings(request: EpgSettingsUpdate) -> EpgSettings:
    updated = await settings_service.update_settings(request)
    await epg_scheduler.reschedule()
    return updated


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------

@main_router.get("/programs", response_model=list[ProgramResponse])
async def get_channel_programs(
    name: str = Query(..., min_length=1, description="Live-stream display name"),
    hours: float = Query(24, gt=0, le=336, description="Look-ahead window in hours"),
) -> list[ProgramResponse]:
    return await epg_query_service.get_channel_programs(name, hours)


@main_router.get("/programs/current", response_model=CurrentProgramResponse)
async def get_current_program(
    name: str = Query(..., min_length=1, description="Live-stream display name"),
) -> CurrentProgramResponse:
    program = await epg_query_service.get_current_program(name)
    return CurrentProgramResponse(
        program=program,
        progress=calculate_progress(program) if program else 0,
    )


@main_router.get("/programs/guide", response_model=ChannelGuideResponse)
async def get_channel_guide(
    name: str = Query(..., min_length=1, description="Live-stream display name"),
    hours: float = Query(6, gt=0, le=336, description="Look-ahead window in hours"),
    limit: int = Query(3, ge=0, le=50, description="Maximum upcoming programs"),
) -> ChannelGuideResponse:
    return await epg_query_service.get_channel_guide(name, hours, limit)

"""
EPG Fetching Service

Coordinates downloading, parsing, and persistence of EPG sources, and keeps
the registry's refresh metadata in step with the stored data.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from epg_guide.database import session_scope
from epg_guide.exceptions import EpgError, NotFoundError
from epg_guide.schemas import EpgSource, EpgSourceUpdate, SourceTestResult
from epg_guide.services import db_service, settings_service, source_registry_service
from epg_guide.services.epg_downloader_service import fetch_and_parse
from epg_guide.services.fetch_coordinator import get_fetch_coordinator
from epg_guide.services.fetch_types import ParsedEpg, ProgressCallback, ProgressEvent, ProgressStage
from epg_guide.services.progress import emit_progress
from epg_guide.services.transport import Transport
from epg_guide.utils.logging_helpers import (
    log_refresh_end,
    log_refresh_start,
    log_source_processing,
    sanitize_url_for_logging,
)
from epg_guide.utils.timezone import utc_now


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SourceSummary:
    index: int
    source_id: str
    name: str
    sanitized_url: str
    started_at: datetime
    completed_at: datetime
    status: Literal["success", "failed"]
    channels_parsed: int = 0
    programs_parsed: int = 0
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        payload = {
            "source_index": self.index,
            "source_id": self.source_id,
            "name": self.name,
            "sanitized_url": self.sanitized_url,
            "status": self.status,
            "channels_parsed": self.channels_parsed,
            "programs_parsed": self.programs_parsed,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }
        if self.error:
            payload["error"] = self.error
        return payload


def error_message(exc: BaseException) -> str:
    """Human-readable message carried from whichever layer raised"""
    if isinstance(exc, EpgError):
        return exc.message
    return str(exc) or type(exc).__name__


async def refresh_source(
    source: EpgSource | str,
    on_progress: ProgressCallback | None = None,
    *,
    transport: Transport | None = None,
) -> ParsedEpg:
    """
    Fetch, parse and store one source

    The new bundle and the registry metadata are committed together. On
    failure the previously stored bundle is left untouched, the error is
    recorded on the source and re-raised.

    Raises:
        NotFoundError: If the source does not exist
        FetchError, DecompressionError, ParseError: Pipeline failures
    """
    if isinstance(source, str):
        try:
            source = await source_registry_service.get_source(source)
        except NotFoundError as exc:
            emit_progress(on_progress, ProgressEvent(ProgressStage.ERROR, None, exc.message))
            raise

    sanitized_url = sanitize_url_for_logging(source.url)
    logger.info("Refreshing EPG source %s '%s' from %s", source.id, source.name, sanitized_url)

    try:
        epg_settings = await settings_service.get_settings()
        parsed = await fetch_and_parse(source.url, epg_settings, on_progress, transport=transport)

        emit_progress(on_progress, ProgressEvent(ProgressStage.SAVING, 0, "Saving EPG data..."))
        async with session_scope() as session:
            await db_service.replace_source_data(
                session, source.id, parsed.channels, parsed.programs, utc_now()
            )
            finished_at = utc_now()
            await source_registry_service.update_source_record(
                session,
                source.id,
                EpgSourceUpdate(
                    last_fetch_at=finished_at,
                    last_success_at=finished_at,
                    last_error=None,
                    channel_count=len(parsed.channels),
                    program_count=len(parsed.programs),
                ),
            )
    except asyncio.CancelledError:
        logger.warning("Refresh of source %s cancelled; stored data left unchanged", source.id)
        emit_progress(on_progress, ProgressEvent(ProgressStage.ERROR, None, "Refresh cancelled"))
        raise
    except Exception as exc:
        message = error_message(exc)
        logger.error(
            "Refresh of source %s failed: %s",
            source.id,
            message,
            exc_info=not isinstance(exc, EpgError),
        )
        try:
            await _record_failure(source.id, message)
        finally:
            emit_progress(on_progress, ProgressEvent(ProgressStage.ERROR, None, message))
        raise

    logger.info(
        "Source %s refreshed: %s channels, %s programs",
        source.id,
        len(parsed.channels),
        len(parsed.programs),
    )
    emit_progress(on_progress, ProgressEvent(ProgressStage.COMPLETE, 100, "EPG update complete!"))
    return parsed


async def _record_failure(source_id: str, message: str) -> None:
    try:
        await source_registry_service.update_source(
            source_id,
            EpgSourceUpdate(last_fetch_at=utc_now(), last_error=message),
        )
    except NotFoundError:
        logger.warning("Source %s was removed during refresh; failure not recorded", source_id)


async def refresh_all_enabled(
    on_progress: ProgressCallback | None = None,
    *,
    transport: Transport | None = None,
) -> dict:
    """
    Refresh every enabled source, one at a time

    A failing source is recorded and skipped; the remaining sources still run.
    Returns a 'skipped' result if another batch is already in progress.
    """
    return await get_fetch_coordinator().execute(
        lambda: _refresh_enabled_sources(on_progress, transport)
    )


async def _refresh_enabled_sources(
    on_progress: ProgressCallback | None,
    transport: Transport | None,
) -> dict:
    started_at = utc_now()
    sources = [source for source in await source_registry_service.list_sources() if source.enabled]
    log_refresh_start(logger, len(sources))

    if not sources:
        logger.warning("No enabled EPG sources configured - nothing to refresh")

    summaries: list[SourceSummary] = []
    for index, source in enumerate(sources, start=1):
        log_source_processing(logger, index, len(sources), source.name, source.url)
        source_started = utc_now()
        try:
            parsed = await refresh_source(source, on_progress, transport=transport)
        except Exception as exc:
            summaries.append(SourceSummary(
                index=index,
                source_id=source.id,
                name=source.name,
                sanitized_url=sanitize_url_for_logging(source.url),
                started_at=source_started,
                completed_at=utc_now(),
                status="failed",
                error=error_message(exc),
            ))
            continue

        summaries.append(SourceSummary(
            index=index,
            source_id=source.id,
            name=source.name,
            sanitized_url=sanitize_url_for_logging(source.url),
            started_at=source_started,
            completed_at=utc_now(),
            status="success",
            channels_parsed=len(parsed.channels),
            programs_parsed=len(parsed.programs),
        ))

    successes = sum(1 for summary in summaries if summary.status == "success")
    failures = len(summaries) - successes
    log_refresh_end(logger, successes, failures)

    return {
        "status": "success",
        "timestamp": utc_now().isoformat(),
        "sources_processed": len(summaries),
        "sources_succeeded": successes,
        "sources_failed": failures,
        "source_details": [summary.to_dict() for summary in summaries],
        "started_at": started_at.isoformat(),
    }


async def test_source(
    url: str,
    on_progress: ProgressCallback | None = None,
    *,
    transport: Transport | None = None,
) -> SourceTestResult:
    """
    Fetch and parse a URL without storing anything

    Pipeline errors are returned in the result instead of being raised.
    """
    epg_settings = await settings_service.get_settings()
    logger.info("Testing EPG source %s", sanitize_url_for_logging(url))

    try:
        parsed = await fetch_and_parse(url, epg_settings, on_progress, transport=transport)
    except Exception as exc:
        message = error_message(exc)
        logger.warning(
            "EPG source test failed: %s",
            message,
            exc_info=not isinstance(exc, EpgError),
        )
        emit_progress(on_progress, ProgressEvent(ProgressStage.ERROR, None, message))
        return SourceTestResult(success=False, error=message)

    message = f"Successfully parsed {len(parsed.channels)} channels and {len(parsed.programs)} programs"
    emit_progress(on_progress, ProgressEvent(ProgressStage.COMPLETE, 100, message))
    return SourceTestResult(
        success=True,
        channel_count=len(parsed.channels),
        program_count=len(parsed.programs),
        message=message,
    )

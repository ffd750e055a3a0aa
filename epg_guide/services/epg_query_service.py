"""
EPG Query Service

Answers "what is on channel X now / next" for a live-stream display name.
There is no shared identifier between the stream catalog and XMLTV channel
ids, so channels are matched by name: both names are lowercased and trimmed,
and they match when either contains the other. This is deliberately
permissive ("Kanal 1" matches "Kanal 1 HD") and can produce false positives
for short or generic names.
"""
from datetime import datetime, timedelta
import logging
import math

from epg_guide.config import settings
from epg_guide.database import session_scope
from epg_guide.models import EpgProgramRecord
from epg_guide.schemas import ChannelGuideResponse, EpgProgram, ProgramResponse
from epg_guide.services import db_service
from epg_guide.utils.timezone import from_utc_iso, utc_now

logger = logging.getLogger(__name__)


def normalize_name(name: str | None) -> str:
    return (name or "").strip().lower()


def names_match(query: str, display_name: str) -> bool:
    """
    Fuzzy channel-name comparison

    A blank name on either side never matches; otherwise containment in
    either direction after normalization.
    """
    normalized_query = normalize_name(query)
    normalized_display = normalize_name(display_name)
    if not normalized_query or not normalized_display:
        return False
    return normalized_display in normalized_query or normalized_query in normalized_display


async def get_channel_programs(
    display_name: str,
    window_hours: float = 24,
    now: datetime | None = None,
) -> list[ProgramResponse]:
    """
    Get current and upcoming programs for a channel name

    A program is included when it has not ended yet and starts before the end
    of the window, so a program already in progress is part of the result.

    Args:
        display_name: Live-stream name as known to the caller
        window_hours: Look-ahead window
        now: Reference time (defaults to the current UTC time)

    Returns:
        Programs sorted by start time ascending
    """
    now = now or utc_now()
    window_end = now + timedelta(hours=window_hours)

    async with session_scope() as session:
        hidden_sources = await _hidden_source_ids(session)
        channel_names = await _match_channels(session, display_name, hidden_sources)
        if not channel_names:
            logger.debug("No EPG channel matches '%s'", display_name)
            return []

        rows = await db_service.query_programs_for_channels(
            session, channel_names.keys(), now, window_end
        )

    rows.sort(key=lambda row: (row.start_time, row.source_id, row.position))
    programs = [_to_response(row, channel_names[(row.source_id, row.xmltv_channel_id)]) for row in rows]

    logger.debug(
        "'%s': %s program(s) from %s matched channel(s) within %sh",
        display_name,
        len(programs),
        len(channel_names),
        window_hours,
    )
    return programs


async def get_current_program(display_name: str, now: datetime | None = None) -> ProgramResponse | None:
    """First program airing at `now` on a matching channel, if any"""
    now = now or utc_now()
    for program in await get_channel_programs(display_name, 1, now=now):
        if program.start <= now < program.stop:
            return program
    return None


async def get_channel_guide(
    display_name: str,
    window_hours: float = 6,
    upcoming_limit: int = 3,
    now: datetime | None = None,
) -> ChannelGuideResponse:
    """Current program with its progress plus the next programs starting after now"""
    now = now or utc_now()
    current = await get_current_program(display_name, now=now)
    programs = await get_channel_programs(display_name, window_hours, now=now)
    upcoming = [program for program in programs if program.start > now][:upcoming_limit]

    return ChannelGuideResponse(
        current=current,
        progress=calculate_progress(current, now=now) if current else 0,
        upcoming=upcoming,
    )


def calculate_progress(program: EpgProgram, now: datetime | None = None) -> int:
    """
    Elapsed share of a program in percent

    Returns 0 when `now` lies outside [start, stop] or the times are unknown;
    callers decide separately whether the program is actually airing.
    """
    now = now or utc_now()
    start, stop = program.start, program.stop
    if start is None or stop is None or stop <= start:
        return 0
    if now < start or now > stop:
        return 0

    ratio = (now - start) / (stop - start)
    # Round half up
    percent = math.floor(ratio * 100 + 0.5)
    return max(0, min(100, percent))


async def _hidden_source_ids(session) -> set[str]:
    """Sources whose stored data is excluded from queries"""
    if not settings.epg_query_respects_enabled:
        return set()
    sources = await db_service.list_sources(session)
    return {source.id for source in sources if not source.enabled}


async def _match_channels(session, display_name: str, hidden_sources: set[str]) -> dict[tuple[str, str], str]:
    """
    (source_id, xmltv_id) -> display name of every matching stored channel

    When a source repeats a channel id, its first channel decides the match.
    """
    matches: dict[tuple[str, str], str] = {}
    seen: set[tuple[str, str]] = set()

    for source_id, xmltv_id, channel_name in await db_service.load_channel_names(session):
        if source_id in hidden_sources or xmltv_id is None:
            continue
        key = (source_id, xmltv_id)
        if key in seen:
            continue
        seen.add(key)
        if names_match(display_name, channel_name):
            matches[key] = channel_name

    return matches


def _to_response(row: EpgProgramRecord, channel_name: str) -> ProgramResponse:
    return ProgramResponse(
        channel_id=row.xmltv_channel_id,
        start=from_utc_iso(row.start_time),
        stop=from_utc_iso(row.stop_time),
        title=row.title,
        description=row.description,
        category=row.category,
        icon=row.icon_url,
        channel_name=channel_name,
        source_id=row.source_id,
    )

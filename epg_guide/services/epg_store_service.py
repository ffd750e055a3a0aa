"""
EPG Store Service

Per-source channel/program snapshots. Every save replaces the previous bundle
of that source completely; there is no merging of old and new programs.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from epg_guide.database import session_scope
from epg_guide.models import EpgChannelRecord, EpgProgramRecord, EpgSourceDataRecord
from epg_guide.schemas import EpgChannel, EpgProgram, EpgSourceData, EpgSourceDataSummary
from epg_guide.services import db_service
from epg_guide.services.fetch_types import ParsedEpg
from epg_guide.utils.timezone import from_utc_iso, utc_now


logger = logging.getLogger(__name__)


def _to_channel(row: EpgChannelRecord) -> EpgChannel:
    return EpgChannel(id=row.xmltv_id, display_name=row.display_name, icon=row.icon_url)


def _to_program(row: EpgProgramRecord) -> EpgProgram:
    return EpgProgram(
        channel_id=row.xmltv_channel_id,
        start=from_utc_iso(row.start_time),
        stop=from_utc_iso(row.stop_time),
        title=row.title,
        description=row.description,
        category=row.category,
        icon=row.icon_url,
    )


async def _load_bundle(session: AsyncSession, header: EpgSourceDataRecord) -> EpgSourceData:
    channels = await db_service.load_channels(session, header.source_id)
    programs = await db_service.load_programs(session, header.source_id)
    return EpgSourceData(
        channels=[_to_channel(row) for row in channels],
        programs=[_to_program(row) for row in programs],
        updated_at=from_utc_iso(header.updated_at),
    )


async def save(source_id: str, parsed: ParsedEpg) -> None:
    """Replace the stored bundle of source_id and stamp updated_at"""
    async with session_scope() as session:
        await db_service.replace_source_data(
            session, source_id, parsed.channels, parsed.programs, utc_now()
        )


async def get_all() -> dict[str, EpgSourceData]:
    """Every stored bundle keyed by source id"""
    async with session_scope() as session:
        headers = await db_service.list_source_data_headers(session)
        return {header.source_id: await _load_bundle(session, header) for header in headers}


async def get_for_source(source_id: str) -> EpgSourceData | None:
    async with session_scope() as session:
        header = await db_service.get_source_data_header(session, source_id)
        if header is None:
            return None
        return await _load_bundle(session, header)


async def get_summary(source_id: str) -> EpgSourceDataSummary | None:
    """Counts and timestamp of a stored bundle without loading its rows"""
    async with session_scope() as session:
        header = await db_service.get_source_data_header(session, source_id)
        if header is None:
            return None
        channel_count, program_count = await db_service.count_source_rows(session, source_id)
        return EpgSourceDataSummary(
            source_id=source_id,
            channel_count=channel_count,
            program_count=program_count,
            updated_at=from_utc_iso(header.updated_at),
        )


async def delete_for_source(source_id: str) -> bool:
    async with session_scope() as session:
        removed = await db_service.delete_source_data(session, source_id)
    if removed:
        logger.info("Deleted stored EPG data of source %s", source_id)
    return removed

"""
Database operations for EPG data

This module contains all database CRUD operations for sources, settings,
channels and programs. Callers own the session and the transaction.
"""
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from time import perf_counter
from uuid import uuid4

from sqlalchemy import delete, func, insert, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from epg_guide.config import settings
from epg_guide.models import (
    EpgChannelRecord,
    EpgProgramRecord,
    EpgSettingsRecord,
    EpgSourceDataRecord,
    EpgSourceRecord,
)
from epg_guide.services.fetch_types import ChannelPayload, ProgramPayload
from epg_guide.utils.logging_helpers import log_storage_stats
from epg_guide.utils.timezone import to_utc_iso, utc_now


logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1

# Keeps row-value IN lists well below SQLite's bound parameter limit
_KEY_CHUNK_SIZE = 400


# ---------------------------------------------------------------------------
# Source registry
# ---------------------------------------------------------------------------

async def list_sources(db: AsyncSession) -> list[EpgSourceRecord]:
    """All sources in insertion order"""
    result = await db.execute(select(EpgSourceRecord).order_by(EpgSourceRecord.position))
    return list(result.scalars().all())


async def get_source(db: AsyncSession, source_id: str) -> EpgSourceRecord | None:
    return await db.get(EpgSourceRecord, source_id)


async def insert_source(db: AsyncSession, name: str, url: str) -> EpgSourceRecord:
    """
    Append a new source with fresh refresh metadata.

    Args:
        db: Database session
        name: Validated display name
        url: Validated document URL

    Returns:
        The persisted record
    """
    result = await db.execute(select(func.max(EpgSourceRecord.position)))
    last_position = result.scalar_one_or_none()

    record = EpgSourceRecord(
        id=uuid4().hex,
        position=(last_position or 0) + 1,
        name=name,
        url=url,
        enabled=True,
        last_fetch_at=None,
        last_success_at=None,
        last_error=None,
        channel_count=0,
        program_count=0,
        created_at=to_utc_iso(utc_now()),
    )
    db.add(record)
    await db.flush()

    logger.info("Added EPG source %s (%s)", record.id, name)
    return record


async def delete_source(db: AsyncSession, source_id: str) -> bool:
    """Delete a source row; returns False when it did not exist"""
    result = await db.execute(delete(EpgSourceRecord).where(EpgSourceRecord.id == source_id))
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Settings record
# ---------------------------------------------------------------------------

async def get_settings_record(db: AsyncSession) -> EpgSettingsRecord:
    """Return the settings row, seeding it from process configuration on first use"""
    record = await db.get(EpgSettingsRecord, SETTINGS_ROW_ID)
    if record is None:
        record = EpgSettingsRecord(
            id=SETTINGS_ROW_ID,
            auto_update=settings.epg_default_auto_update,
            update_interval_hours=settings.epg_default_update_interval_hours,
            last_auto_update_at=None,
            use_cors_proxy=settings.epg_default_use_cors_proxy,
            cors_proxy_url_template=settings.epg_default_cors_proxy_url,
        )
        db.add(record)
        await db.flush()
        logger.info("Seeded EPG settings from configuration defaults")
    return record


# ---------------------------------------------------------------------------
# EPG store
# ---------------------------------------------------------------------------

async def delete_source_data(db: AsyncSession, source_id: str) -> bool:
    """
    Remove a source's stored channels and programs.

    Returns:
        True if a stored bundle existed
    """
    await db.execute(delete(EpgProgramRecord).where(EpgProgramRecord.source_id == source_id))
    await db.execute(delete(EpgChannelRecord).where(EpgChannelRecord.source_id == source_id))
    result = await db.execute(
        delete(EpgSourceDataRecord).where(EpgSourceDataRecord.source_id == source_id)
    )
    return bool(result.rowcount)


async def replace_source_data(
    db: AsyncSession,
    source_id: str,
    channels: Sequence[ChannelPayload],
    programs: Sequence[ProgramPayload],
    updated_at: datetime,
) -> None:
    """
    Replace a source's stored bundle with a new snapshot.

    Old rows are deleted and new rows inserted inside the caller's transaction,
    so readers see either the previous or the new complete set.

    Args:
        db: Database session
        source_id: Owner of the bundle
        channels: Channels in document order
        programs: Programs in document order
        updated_at: Snapshot timestamp
    """
    log_storage_stats(logger, source_id, len(channels), len(programs))
    loop_start = perf_counter()

    await delete_source_data(db, source_id)
    await db.execute(
        insert(EpgSourceDataRecord),
        [{"source_id": source_id, "updated_at": to_utc_iso(updated_at)}],
    )

    channel_payload = [
        {
            "source_id": source_id,
            "position": position,
            "xmltv_id": channel.xmltv_id,
            "display_name": channel.display_name,
            "icon_url": channel.icon_url,
        }
        for position, channel in enumerate(channels)
    ]
    await _insert_chunked(db, EpgChannelRecord, channel_payload)

    program_payload = [
        {
            "source_id": source_id,
            "position": position,
            "xmltv_channel_id": program.xmltv_channel_id,
            "start_time": to_utc_iso(program.start_time),
            "stop_time": to_utc_iso(program.stop_time),
            "title": program.title,
            "description": program.description,
            "category": program.category,
            "icon_url": program.icon_url,
        }
        for position, program in enumerate(programs)
    ]
    await _insert_chunked(db, EpgProgramRecord, program_payload)

    logger.info(
        "Stored bundle for source %s in %.2fs",
        source_id,
        perf_counter() - loop_start,
    )


async def _insert_chunked(db: AsyncSession, model, rows: list[dict]) -> None:
    if not rows:
        return

    chunk_size = settings.epg_programs_chunk_size
    for start_index in range(0, len(rows), chunk_size):
        chunk = rows[start_index:start_index + chunk_size]
        await db.execute(insert(model), chunk)
    logger.debug("Inserted %s %s rows", len(rows), model.__tablename__)


async def get_source_data_header(db: AsyncSession, source_id: str) -> EpgSourceDataRecord | None:
    return await db.get(EpgSourceDataRecord, source_id)


async def list_source_data_headers(db: AsyncSession) -> list[EpgSourceDataRecord]:
    result = await db.execute(select(EpgSourceDataRecord).order_by(EpgSourceDataRecord.source_id))
    return list(result.scalars().all())


async def load_channels(db: AsyncSession, source_id: str) -> list[EpgChannelRecord]:
    result = await db.execute(
        select(EpgChannelRecord)
        .where(EpgChannelRecord.source_id == source_id)
        .order_by(EpgChannelRecord.position)
    )
    return list(result.scalars().all())


async def load_programs(db: AsyncSession, source_id: str) -> list[EpgProgramRecord]:
    result = await db.execute(
        select(EpgProgramRecord)
        .where(EpgProgramRecord.source_id == source_id)
        .order_by(EpgProgramRecord.position)
    )
    return list(result.scalars().all())


async def count_source_rows(db: AsyncSession, source_id: str) -> tuple[int, int]:
    """Channel and program counts of a stored bundle"""
    channel_count = await db.scalar(
        select(func.count(EpgChannelRecord.id)).where(EpgChannelRecord.source_id == source_id)
    )
    program_count = await db.scalar(
        select(func.count(EpgProgramRecord.id)).where(EpgProgramRecord.source_id == source_id)
    )
    return channel_count or 0, program_count or 0


async def load_channel_names(db: AsyncSession) -> list[tuple[str, str | None, str]]:
    """(source_id, xmltv_id, display_name) of every stored channel, document order per source"""
    result = await db.execute(
        select(
            EpgChannelRecord.source_id,
            EpgChannelRecord.xmltv_id,
            EpgChannelRecord.display_name,
        ).order_by(EpgChannelRecord.source_id, EpgChannelRecord.position)
    )
    return [(row[0], row[1], row[2]) for row in result.all()]


async def query_programs_for_channels(
    db: AsyncSession,
    channel_keys: Iterable[tuple[str, str]],
    stop_after: datetime,
    start_before: datetime,
) -> list[EpgProgramRecord]:
    """
    Programs of the given (source_id, xmltv_id) channels overlapping a window.

    Programs with a null start or stop never satisfy the comparisons and are
    excluded by the database.

    Args:
        db: Database session
        channel_keys: (source_id, xmltv_channel_id) pairs
        stop_after: Keep programs whose stop is after this instant
        start_before: Keep programs whose start is before this instant

    Returns:
        Matching program rows, unsorted
    """
    keys = list(channel_keys)
    stop_after_iso = to_utc_iso(stop_after)
    start_before_iso = to_utc_iso(start_before)

    rows: list[EpgProgramRecord] = []
    for start_index in range(0, len(keys), _KEY_CHUNK_SIZE):
        chunk = keys[start_index:start_index + _KEY_CHUNK_SIZE]
        stmt = select(EpgProgramRecord).where(
            tuple_(EpgProgramRecord.source_id, EpgProgramRecord.xmltv_channel_id).in_(chunk),
            EpgProgramRecord.stop_time > stop_after_iso,
            EpgProgramRecord.start_time < start_before_iso,
            EpgProgramRecord.start_time < EpgProgramRecord.stop_time,
        )
        result = await db.execute(stmt)
        rows.extend(result.scalars().all())

    return rows

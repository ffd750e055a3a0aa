"""
Source Registry Service

CRUD for configured EPG sources. Removing a source also discards its stored
EPG bundle in the same transaction.
"""
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from epg_guide.database import session_scope
from epg_guide.exceptions import NotFoundError, ValidationError
from epg_guide.models import EpgSourceRecord
from epg_guide.schemas import EpgSource, EpgSourceUpdate
from epg_guide.services import db_service
from epg_guide.utils.timezone import from_utc_iso, to_utc_iso


logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = ("last_fetch_at", "last_success_at")


def to_source_schema(record: EpgSourceRecord) -> EpgSource:
    return EpgSource(
        id=record.id,
        name=record.name,
        url=record.url,
        enabled=record.enabled,
        last_fetch_at=from_utc_iso(record.last_fetch_at),
        last_success_at=from_utc_iso(record.last_success_at),
        last_error=record.last_error,
        channel_count=record.channel_count,
        program_count=record.program_count,
        created_at=from_utc_iso(record.created_at),
    )


def _validate_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Source name must not be empty", context={"field": "name"})
    return name


def _validate_url(url: str | None) -> str:
    url = (url or "").strip()
    if not url:
        raise ValidationError("Source URL must not be empty", context={"field": "url"})
    if not url.lower().startswith(("http://", "https://")):
        raise ValidationError(f"EPG source URL must be HTTP/HTTPS: {url}", context={"field": "url"})
    return url


async def list_sources() -> list[EpgSource]:
    """All configured sources in insertion order"""
    async with session_scope() as session:
        records = await db_service.list_sources(session)
        return [to_source_schema(record) for record in records]


async def get_source(source_id: str) -> EpgSource:
    async with session_scope() as session:
        record = await _require_source(session, source_id)
        return to_source_schema(record)


async def add_source(name: str, url: str) -> EpgSource:
    """
    Register a new source

    Raises:
        ValidationError: If name or URL is empty, or the URL is not HTTP(S)
    """
    name = _validate_name(name)
    url = _validate_url(url)

    async with session_scope() as session:
        record = await db_service.insert_source(session, name, url)
        return to_source_schema(record)


async def update_source(source_id: str, fields: dict[str, Any] | EpgSourceUpdate) -> EpgSource:
    """
    Merge fields into an existing source

    Raises:
        NotFoundError: If the source id is unknown
        ValidationError: If a field is unknown or has an invalid value
    """
    async with session_scope() as session:
        record = await update_source_record(session, source_id, fields)
        return to_source_schema(record)


async def update_source_record(
    session: AsyncSession,
    source_id: str,
    fields: dict[str, Any] | EpgSourceUpdate,
) -> EpgSourceRecord:
    """update_source inside the caller's transaction"""
    if isinstance(fields, EpgSourceUpdate):
        update = fields
    else:
        try:
            update = EpgSourceUpdate.model_validate(fields)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid source update: {exc.errors(include_url=False)}",
                context={"fields": sorted(fields)},
            ) from exc

    changes = update.model_dump(exclude_unset=True)
    if "name" in changes:
        changes["name"] = _validate_name(changes["name"])
    if "url" in changes:
        changes["url"] = _validate_url(changes["url"])
    if "enabled" in changes and changes["enabled"] is None:
        raise ValidationError("enabled must be true or false", context={"field": "enabled"})
    for counter in ("channel_count", "program_count"):
        if counter in changes and changes[counter] is None:
            changes[counter] = 0

    record = await _require_source(session, source_id)
    for key, value in changes.items():
        if key in _TIMESTAMP_FIELDS:
            value = to_utc_iso(value)
        setattr(record, key, value)
    await session.flush()

    logger.debug("Updated EPG source %s: %s", source_id, sorted(changes))
    return record


async def set_enabled(source_id: str, enabled: bool) -> EpgSource:
    return await update_source(source_id, {"enabled": enabled})


async def remove_source(source_id: str) -> None:
    """Delete a source and its stored EPG data; unknown ids are ignored"""
    async with session_scope() as session:
        removed = await db_service.delete_source(session, source_id)
        had_data = await db_service.delete_source_data(session, source_id)

    if removed or had_data:
        logger.info("Removed EPG source %s (stored data removed: %s)", source_id, had_data)
    else:
        logger.debug("Remove of unknown EPG source %s ignored", source_id)


async def _require_source(session: AsyncSession, source_id: str) -> EpgSourceRecord:
    record = await db_service.get_source(session, source_id)
    if record is None:
        raise NotFoundError(f"EPG source not found: {source_id}", context={"source_id": source_id})
    return record

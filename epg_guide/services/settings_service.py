"""
EPG Settings Service

Reads and updates the persisted EpgSettings record.
"""
import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from epg_guide.database import session_scope
from epg_guide.exceptions import ValidationError
from epg_guide.models import EpgSettingsRecord
from epg_guide.schemas import EpgSettings, EpgSettingsUpdate
from epg_guide.services import db_service
from epg_guide.utils.timezone import from_utc_iso, to_utc_iso


logger = logging.getLogger(__name__)


def _to_schema(record: EpgSettingsRecord) -> EpgSettings:
    return EpgSettings(
        auto_update=record.auto_update,
        update_interval_hours=record.update_interval_hours,
        last_auto_update_at=from_utc_iso(record.last_auto_update_at),
        use_cors_proxy=record.use_cors_proxy,
        cors_proxy_url_template=record.cors_proxy_url_template,
    )


async def get_settings() -> EpgSettings:
    async with session_scope() as session:
        record = await db_service.get_settings_record(session)
        return _to_schema(record)


async def update_settings(fields: dict[str, Any] | EpgSettingsUpdate) -> EpgSettings:
    """
    Merge fields into the settings record

    Raises:
        ValidationError: If a field is unknown or the merged record is invalid
    """
    try:
        update = fields if isinstance(fields, EpgSettingsUpdate) else EpgSettingsUpdate.model_validate(fields)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid settings update: {exc.errors(include_url=False)}") from exc

    changes = {key: value for key, value in update.model_dump(exclude_unset=True).items() if value is not None}

    async with session_scope() as session:
        record = await db_service.get_settings_record(session)
        merged = _to_schema(record).model_dump() | changes
        try:
            validated = EpgSettings.model_validate(merged)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid settings: {exc.errors(include_url=False)}") from exc

        for key, value in changes.items():
            setattr(record, key, value)
        await session.flush()

    logger.info("EPG settings updated: %s", sorted(changes))
    return validated


async def mark_auto_update(at: datetime) -> None:
    """Record the end of a scheduled refresh pass"""
    async with session_scope() as session:
        record = await db_service.get_settings_record(session)
        record.last_auto_update_at = to_utc_iso(at)

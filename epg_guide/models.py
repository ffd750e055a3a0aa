"""
SQLAlchemy ORM Models for EPG Guide

This module defines the database models for the source registry, the EPG
settings record and the per-source channel/program bundles.

All timestamps are stored as fixed-width ISO8601 UTC strings so that range
filters can be expressed as plain string comparisons.
"""
from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class EpgSourceRecord(Base):
    """Configured XMLTV feed"""
    __tablename__ = "epg_sources"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    url: Mapped[str] = mapped_column(String, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_fetch_at: Mapped[str | None] = mapped_column(String, nullable=True)
    last_success_at: Mapped[str | None] = mapped_column(String, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    program_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_epg_sources_position", "position"),
    )

    def __repr__(self) -> str:
        return f"<EpgSourceRecord(id={self.id}, name={self.name}, enabled={self.enabled})>"


class EpgSettingsRecord(Base):
    """Single-row runtime settings for refresh scheduling and transport"""
    __tablename__ = "epg_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    auto_update: Mapped[bool] = mapped_column(Boolean, nullable=False)
    update_interval_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    last_auto_update_at: Mapped[str | None] = mapped_column(String, nullable=True)
    use_cors_proxy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    cors_proxy_url_template: Mapped[str] = mapped_column(String, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<EpgSettingsRecord(auto_update={self.auto_update}, "
            f"interval={self.update_interval_hours}h)>"
        )


class EpgSourceDataRecord(Base):
    """Header row of one source's stored channel/program snapshot"""
    __tablename__ = "epg_source_data"

    source_id: Mapped[str] = mapped_column(String, primary_key=True)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)

    def __repr__(self) -> str:
        return f"<EpgSourceDataRecord(source_id={self.source_id}, updated_at={self.updated_at})>"


class EpgChannelRecord(Base):
    """Channel model for storing XMLTV channel information"""
    __tablename__ = "epg_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("epg_source_data.source_id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    xmltv_id: Mapped[str | None] = mapped_column(String, nullable=True)
    display_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    icon_url: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_epg_channels_source", "source_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<EpgChannelRecord(xmltv_id={self.xmltv_id}, display_name={self.display_name})>"


class EpgProgramRecord(Base):
    """Program model for storing EPG program information"""
    __tablename__ = "epg_programs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("epg_source_data.source_id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    xmltv_channel_id: Mapped[str | None] = mapped_column(String, nullable=True)
    start_time: Mapped[str | None] = mapped_column(String, nullable=True)
    stop_time: Mapped[str | None] = mapped_column(String, nullable=True)
    title: Mapped[str] = mapped_column(String, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String, nullable=False, default="")
    icon_url: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_epg_programs_source_channel_time", "source_id", "xmltv_channel_id", "start_time"),
        Index("idx_epg_programs_source_position", "source_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<EpgProgramRecord(title={self.title}, channel={self.xmltv_channel_id})>"

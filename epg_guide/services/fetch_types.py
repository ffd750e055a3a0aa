"""
Shared dataclasses used across the EPG fetching pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable


@dataclass(slots=True)
class ChannelPayload:
    """In-memory representation of a channel row before persistence."""
    xmltv_id: str | None
    display_name: str = ""
    icon_url: str | None = None


@dataclass(slots=True)
class ProgramPayload:
    """In-memory representation of a program row before persistence.

    start_time/stop_time are None when the source timestamp was malformed;
    such programs are kept but never match a time-window query.
    """
    xmltv_channel_id: str | None
    start_time: datetime | None
    stop_time: datetime | None
    title: str = ""
    description: str = ""
    category: str = ""
    icon_url: str | None = None

    @property
    def is_queryable(self) -> bool:
        return (
            self.start_time is not None
            and self.stop_time is not None
            and self.start_time < self.stop_time
        )


@dataclass(slots=True)
class ParsedEpg:
    """Channels and programs extracted from one XMLTV document."""
    channels: list[ChannelPayload] = field(default_factory=list)
    programs: list[ProgramPayload] = field(default_factory=list)


class ProgressStage(str, Enum):
    DOWNLOADING = "downloading"
    DECOMPRESSING = "decompressing"
    PARSING = "parsing"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """One step of a refresh; percent is None when the total is unknown."""
    stage: ProgressStage
    percent: int | None
    message: str

    @property
    def is_terminal(self) -> bool:
        return self.stage in (ProgressStage.COMPLETE, ProgressStage.ERROR)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "percent": self.percent,
            "message": self.message,
        }


ProgressCallback = Callable[[ProgressEvent], None]


__all__ = [
    "ChannelPayload",
    "ProgramPayload",
    "ParsedEpg",
    "ProgressStage",
    "ProgressEvent",
    "ProgressCallback",
]

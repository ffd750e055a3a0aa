"""Shared fixtures: a fresh SQLite database per test and XMLTV payload builders."""

import gzip
import os
import tempfile
from datetime import datetime, timedelta, timezone

import httpx
import pytest

# Keep the import-time settings object away from the working directory
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.gettempdir(), "epg-guide-tests", "epg.db"))

from epg_guide.config import settings
from epg_guide.database import close_db, init_db
from epg_guide.services.fetch_coordinator import reset_fetch_coordinator
from epg_guide.services.fetch_types import ChannelPayload, ParsedEpg, ProgramPayload
from epg_guide.services.transport import DirectTransport


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Defaults that keep tests deterministic regardless of the environment."""
    monkeypatch.setattr(settings, "epg_default_auto_update", False)
    monkeypatch.setattr(settings, "epg_default_use_cors_proxy", False)
    monkeypatch.setattr(settings, "epg_query_respects_enabled", True)
    monkeypatch.setattr(settings, "epg_honor_timezone_offset", True)
    monkeypatch.setattr(settings, "epg_allow_uncompressed", False)
    reset_fetch_coordinator()
    yield
    reset_fetch_coordinator()


@pytest.fixture()
async def db(tmp_path):
    await init_db(str(tmp_path / "epg.db"))
    yield
    await close_db()


def xmltv_time(value: datetime) -> str:
    """Format an aware datetime the way XMLTV sources do, with an explicit UTC offset."""
    return value.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S +0000")


def build_xmltv(channels, programs, declaration: str = '<?xml version="1.0" encoding="UTF-8"?>') -> str:
    """
    channels: iterable of (id, display_name)
    programs: iterable of (channel_id, start, stop, title) with aware datetimes
    """
    parts = [declaration, '<tv generator-info-name="tests">']
    for channel_id, name in channels:
        parts.append(
            f'<channel id="{channel_id}"><display-name>{name}</display-name>'
            f'<icon src="http://img.example/{channel_id}.png"/></channel>'
        )
    for channel_id, start, stop, title in programs:
        parts.append(
            f'<programme start="{xmltv_time(start)}" stop="{xmltv_time(stop)}" channel="{channel_id}">'
            f'<title lang="en">{title}</title><desc>About {title}</desc><category>News</category>'
            f'</programme>'
        )
    parts.append("</tv>")
    return "\n".join(parts)


def gzip_xmltv(channels, programs) -> bytes:
    return gzip.compress(build_xmltv(channels, programs).encode("utf-8"))


def sample_payload() -> bytes:
    """2 channels, 5 programs"""
    start = NOW.replace(hour=6)
    programs = [
        ("one.de", start + timedelta(hours=i), start + timedelta(hours=i + 1), f"Show {i}")
        for i in range(3)
    ] + [
        ("two.de", start + timedelta(hours=i), start + timedelta(hours=i + 1), f"Film {i}")
        for i in range(2)
    ]
    return gzip_xmltv([("one.de", "Kanal 1 HD"), ("two.de", "Sport Zwei")], programs)


class ChunkedBody(httpx.AsyncByteStream):
    """Response body that is only produced while the client streams it."""

    def __init__(self, data: bytes, chunk_size: int = 1024) -> None:
        self.data = data
        self.chunk_size = chunk_size

    async def __aiter__(self):
        for start in range(0, len(self.data), self.chunk_size):
            yield self.data[start:start + self.chunk_size]


def streamed_response(data: bytes) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"Content-Length": str(len(data))},
        stream=ChunkedBody(data),
    )


def mock_transport(routes: dict[str, bytes | int | Exception], seen: list | None = None) -> DirectTransport:
    """
    DirectTransport over httpx.MockTransport.

    A bytes value is streamed with status 200, an int is answered as a bare
    status code, an exception is raised. Unknown URLs answer 404.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if seen is not None:
            seen.append(url)
        outcome = routes.get(url, 404)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        return streamed_response(outcome)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DirectTransport(client)


def program(channel_id, start, stop, title="Show") -> ProgramPayload:
    return ProgramPayload(
        xmltv_channel_id=channel_id,
        start_time=start,
        stop_time=stop,
        title=title,
    )


def bundle(channels, programs) -> ParsedEpg:
    return ParsedEpg(
        channels=[ChannelPayload(xmltv_id=cid, display_name=name) for cid, name in channels],
        programs=list(programs),
    )

"""
EPG Downloader Service

Handles downloading, decompressing and parsing a single EPG source.
Separated from orchestration logic for better testability.
"""
import asyncio
import gzip
import logging
import zlib

from epg_guide.config import settings
from epg_guide.exceptions import DecompressionError, ParseError
from epg_guide.schemas import EpgSettings
from epg_guide.services.fetch_types import ParsedEpg, ProgressCallback, ProgressEvent, ProgressStage
from epg_guide.services.progress import emit_progress
from epg_guide.services.transport import Transport, build_transport
from epg_guide.services.xmltv_parser_service import parse_xmltv


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def decompress_payload(data: bytes, *, allow_uncompressed: bool | None = None) -> str:
    """
    Inflate a gzip payload into text

    Args:
        data: Raw downloaded bytes
        allow_uncompressed: Accept plain XML that was served without gzip (defaults to settings)

    Returns:
        Decoded document (invalid UTF-8 sequences are replaced)

    Raises:
        DecompressionError: If the payload is not a valid gzip stream
    """
    if allow_uncompressed is None:
        allow_uncompressed = settings.epg_allow_uncompressed

    if not data.startswith(GZIP_MAGIC):
        if allow_uncompressed and data.lstrip()[:1] == b"<":
            logger.info("Payload is not gzip-compressed; using it as plain XML")
            return data.decode("utf-8", errors="replace")
        raise DecompressionError("Payload is not a gzip stream")

    try:
        inflated = gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecompressionError(f"Invalid gzip payload: {exc}") from exc

    logger.debug(
        "Decompressed %.2f MB into %.2f MB",
        len(data) / 1024 / 1024,
        len(inflated) / 1024 / 1024,
    )
    return inflated.decode("utf-8", errors="replace")


async def download_epg(
    url: str,
    epg_settings: EpgSettings,
    on_progress: ProgressCallback | None = None,
    *,
    transport: Transport | None = None,
) -> str:
    """
    Download a source through the configured transport and decompress it

    Raises:
        FetchError: On network/HTTP failure or timeout
        DecompressionError: If the payload is not valid gzip
    """
    transport = transport or build_transport(epg_settings)
    data = await transport.fetch(url, on_progress)

    emit_progress(on_progress, ProgressEvent(ProgressStage.DECOMPRESSING, 0, "Decompressing..."))
    loop = asyncio.get_running_loop()
    text = await loop.run_in_executor(None, decompress_payload, data)
    emit_progress(on_progress, ProgressEvent(ProgressStage.DECOMPRESSING, 100, "Decompressed successfully"))

    return text


async def parse_xmltv_async(
    xml: str | bytes,
    on_progress: ProgressCallback | None = None,
    *,
    parse_timeout_seconds: int | None = None,
) -> ParsedEpg:
    """
    Parse XMLTV content asynchronously with timeout protection.

    Parsing is offloaded to the thread pool to avoid blocking the event loop;
    progress events are handed back to the loop thread.

    Keyword Args:
        parse_timeout_seconds: Timeout in seconds for parsing (0/None disables timeout)

    Raises:
        ParseError: If the XML is malformed or parsing times out
    """
    if parse_timeout_seconds is None:
        parse_timeout_seconds = settings.epg_parse_timeout_sec
    effective_timeout = parse_timeout_seconds if parse_timeout_seconds > 0 else None

    loop = asyncio.get_running_loop()

    def forward(event: ProgressEvent) -> None:
        if on_progress is not None:
            loop.call_soon_threadsafe(on_progress, event)

    timeout_display = f"{effective_timeout}s" if effective_timeout else "disabled"
    logger.debug("Offloading XML parsing to thread pool executor (timeout: %s)...", timeout_display)
    parse_task = loop.run_in_executor(None, parse_xmltv, xml, forward)

    try:
        if effective_timeout:
            parsed = await asyncio.wait_for(parse_task, timeout=effective_timeout)
        else:
            parsed = await parse_task
    except asyncio.TimeoutError:
        logger.error("XML parsing timed out after %s", timeout_display)
        raise ParseError("XML parsing timed out - file may be too large or malformed")

    # Let progress callbacks scheduled from the worker thread run first
    await asyncio.sleep(0)

    if not parsed.channels:
        logger.warning("No channels found in XMLTV document")
    if not parsed.programs:
        logger.warning("No programs found in XMLTV document")

    return parsed


async def fetch_and_parse(
    url: str,
    epg_settings: EpgSettings,
    on_progress: ProgressCallback | None = None,
    *,
    transport: Transport | None = None,
) -> ParsedEpg:
    """Download, decompress and parse one source; each stage waits for the previous one."""
    text = await download_epg(url, epg_settings, on_progress, transport=transport)
    logger.info("Parsing XMLTV content (%.2f MB)...", len(text) / 1024 / 1024)
    parsed = await parse_xmltv_async(text, on_progress)
    logger.info("Parsing complete: %s channels, %s programs", len(parsed.channels), len(parsed.programs))
    return parsed

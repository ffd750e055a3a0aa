import logging
from typing import Optional

from lxml import etree # type: ignore

from epg_guide.config import settings
from epg_guide.exceptions import ParseError
from epg_guide.services.fetch_types import (
    ChannelPayload,
    ParsedEpg,
    ProgramPayload,
    ProgressCallback,
    ProgressEvent,
    ProgressStage,
)
from epg_guide.services.progress import emit_progress
from epg_guide.utils.timezone import parse_xmltv_time

logger = logging.getLogger(__name__)


def parse_xmltv(
    xml: str | bytes,
    on_progress: ProgressCallback | None = None,
    *,
    honor_offset: Optional[bool] = None,
    channel_progress_every: Optional[int] = None,
    program_progress_every: Optional[int] = None,
) -> ParsedEpg:
    """
    Parse an XMLTV document into channels and programs

    Every <channel> and <programme> element is kept, including ones with
    missing attributes or malformed timestamps; those simply never match a
    query later on.

    Args:
        xml: Decompressed document (str is treated as UTF-8 regardless of its XML declaration)
        on_progress: Receives 'parsing' events
        honor_offset: Apply XMLTV timezone offsets (defaults to settings)
        channel_progress_every: Emit progress every N channels (defaults to settings)
        program_progress_every: Emit progress every N programs (defaults to settings)

    Returns:
        ParsedEpg with channels and programs in document order

    Raises:
        ParseError: If the document is not well-formed XML
    """
    if honor_offset is None:
        honor_offset = settings.epg_honor_timezone_offset
    channel_every = channel_progress_every or settings.epg_channel_progress_every
    program_every = program_progress_every or settings.epg_program_progress_every

    emit_progress(on_progress, ProgressEvent(ProgressStage.PARSING, 0, "Parsing XML..."))

    root = _load_document(xml)
    logger.debug(f"  XML document loaded (root tag: {root.tag})")

    channel_elements = root.findall('channel')
    total_channels = len(channel_elements)
    channels: list[ChannelPayload] = []
    for index, channel in enumerate(channel_elements, start=1):
        channels.append(_parse_channel(channel))
        if index % channel_every == 0:
            emit_progress(on_progress, ProgressEvent(
                ProgressStage.PARSING,
                round(index / total_channels * 50),
                f"Parsing channels... {index}/{total_channels}",
            ))
    logger.debug(f"    Found {len(channels)} channels")

    programme_elements = root.findall('programme')
    total_programs = len(programme_elements)
    programs: list[ProgramPayload] = []
    invalid_times = 0
    for index, programme in enumerate(programme_elements, start=1):
        program = _parse_program(programme, honor_offset)
        if not program.is_queryable:
            invalid_times += 1
        programs.append(program)
        if index % program_every == 0:
            emit_progress(on_progress, ProgressEvent(
                ProgressStage.PARSING,
                50 + round(index / total_programs * 50),
                f"Parsing programs... {index}/{total_programs}",
            ))

    if invalid_times:
        logger.warning(f"{invalid_times} program(s) have missing or unusable start/stop times")

    logger.info(f"XMLTV parsing complete: {len(channels)} channels, {len(programs)} programs")
    emit_progress(on_progress, ProgressEvent(
        ProgressStage.PARSING,
        100,
        f"Parsed {len(channels)} channels, {len(programs)} programs",
    ))

    return ParsedEpg(channels=channels, programs=programs)


def _load_document(xml: str | bytes) -> etree._Element:
    """Build the element tree, mapping syntax errors to ParseError"""
    options = dict(huge_tree=True, resolve_entities=False, no_network=True)
    if isinstance(xml, str):
        data = xml.encode("utf-8")
        parser = etree.XMLParser(encoding="utf-8", **options)
    else:
        data = xml
        parser = etree.XMLParser(**options)

    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        logger.error(f"  XML parsing error: {e}")
        raise ParseError(f"XML parsing error: {e}") from e

    if root is None:
        raise ParseError("XML parsing error: empty document")
    return root


def _parse_channel(channel: etree._Element) -> ChannelPayload:
    """Parse single channel element"""
    xmltv_id = channel.get('id')
    if not xmltv_id:
        logger.debug("Channel without id attribute kept; it will never match a program")

    return ChannelPayload(
        xmltv_id=xmltv_id,
        display_name=_get_text(channel, 'display-name', default=""),
        icon_url=_get_icon(channel),
    )


def _parse_program(programme: etree._Element, honor_offset: bool) -> ProgramPayload:
    """Parse single programme element"""
    return ProgramPayload(
        xmltv_channel_id=programme.get('channel'),
        start_time=parse_xmltv_time(programme.get('start'), honor_offset=honor_offset),
        stop_time=parse_xmltv_time(programme.get('stop'), honor_offset=honor_offset),
        title=_get_text(programme, 'title', default=""),
        description=_get_text(programme, 'desc', default=""),
        category=_get_text(programme, 'category', default=""),
        icon_url=_get_icon(programme),
    )


def _get_icon(element: etree._Element) -> Optional[str]:
    icon_elem = element.find('icon')
    if icon_elem is None:
        return None
    return icon_elem.get('src') or None


def _get_text(element: etree._Element, tag: str, default: str = "") -> str:
    """Safely extract text (including nested markup) from the first matching child"""
    child = element.find(tag)
    if child is None:
        return default
    text = "".join(child.itertext()).strip()
    return text or default

"""
Services package for EPG Guide

This package contains all business logic and service layer components.
"""
from epg_guide.services.epg_fetch_service import refresh_all_enabled, refresh_source
from epg_guide.services.epg_query_service import (
    calculate_progress,
    get_channel_guide,
    get_channel_programs,
    get_current_program,
)
from epg_guide.services.scheduler_service import epg_scheduler
from epg_guide.services.xmltv_parser_service import parse_xmltv

__all__ = [
    'refresh_source',
    'refresh_all_enabled',
    'get_channel_programs',
    'get_current_program',
    'get_channel_guide',
    'calculate_progress',
    'epg_scheduler',
    'parse_xmltv',
]

"""
Structured logging helpers for consistent log formatting.

Provides utilities for structured, clean logging without excessive decorative separators.
"""
import logging
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials and query secrets from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***:***@" + netloc.rsplit("@", 1)[1]

    # XtreamCodes panels pass username/password as query parameters
    query = parts.query
    if query:
        masked = []
        for pair in query.split("&"):
            key, sep, _ = pair.partition("=")
            if sep and key.lower() in {"username", "password", "user", "pass", "token"}:
                masked.append(f"{key}=***")
            else:
                masked.append(pair)
        query = "&".join(masked)

    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def log_source_processing(logger: logging.Logger, idx: int, total: int, name: str, url: str) -> None:
    """
    Log source processing header.

    Args:
        logger: Logger instance
        idx: Current source index (1-based)
        total: Total number of sources
        name: Source display name
        url: Source URL being processed
    """
    logger.info("Processing source %s/%s '%s': %s", idx, total, name, sanitize_url_for_logging(url))


def log_refresh_start(logger: logging.Logger, source_count: int) -> None:
    """Log batch refresh start."""
    logger.info(
        "EPG refresh of %s enabled source(s) started at %s",
        source_count,
        datetime.now(timezone.utc).isoformat(),
    )


def log_refresh_end(logger: logging.Logger, succeeded: int, failed: int) -> None:
    """Log batch refresh end."""
    logger.info(
        "EPG refresh completed at %s (%s succeeded, %s failed)",
        datetime.now(timezone.utc).isoformat(),
        succeeded,
        failed,
    )


def log_storage_stats(
    logger: logging.Logger,
    source_id: str,
    total_channels: int,
    total_programs: int
) -> None:
    """
    Log storage statistics.

    Args:
        logger: Logger instance
        source_id: Source the bundle belongs to
        total_channels: Channels being stored
        total_programs: Programs being stored
    """
    logger.info(
        "Storing data for source %s: %s channels, %s programs",
        source_id,
        total_channels,
        total_programs,
    )

"""
Request transports

A transport turns a URL into the raw response body. DirectTransport talks to
the origin with httpx; ProxyTransport rewrites the URL through a `{URL}`
template first, for origins that must be reached through a rewriting proxy.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol
from urllib.parse import quote

import httpx

from epg_guide.config import PROXY_URL_PLACEHOLDER, settings
from epg_guide.exceptions import FetchError, ValidationError
from epg_guide.schemas import EpgSettings
from epg_guide.services.fetch_types import ProgressCallback, ProgressEvent, ProgressStage
from epg_guide.services.progress import emit_progress
from epg_guide.utils.logging_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; EPG-Guide/1.0)",
    "Accept": "application/gzip, application/xml, */*",
}

# Reported every N bytes when the server sends no Content-Length
_UNKNOWN_SIZE_REPORT_BYTES = 1024 * 1024


class Transport(Protocol):
    async def fetch(self, url: str, on_progress: ProgressCallback | None = None) -> bytes:
        ...


class DirectTransport:
    """Streams a URL with httpx, reporting download progress."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = None,
        chunk_size: int | None = None,
    ) -> None:
        self._client = client
        self.timeout = timeout or settings.epg_fetch_timeout_sec
        self.chunk_size = chunk_size or settings.epg_download_chunk_size

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            headers=HEADERS,
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
        ) as client:
            yield client

    async def fetch(self, url: str, on_progress: ProgressCallback | None = None) -> bytes:
        """
        Download url into memory

        The whole transfer is bounded by the configured timeout. Cancelling the
        calling task closes the response and aborts the transfer.

        Raises:
            FetchError: On connection failure, non-2xx status or timeout
        """
        sanitized = sanitize_url_for_logging(url)
        logger.info("Downloading EPG from %s", sanitized)
        emit_progress(on_progress, ProgressEvent(ProgressStage.DOWNLOADING, 0, "Downloading EPG file..."))

        try:
            async with self._client_scope() as client:
                data = await asyncio.wait_for(
                    self._download(client, url, on_progress),
                    timeout=self.timeout,
                )
        except asyncio.TimeoutError as exc:
            logger.error("Download of %s timed out after %ss", sanitized, self.timeout)
            raise FetchError(f"Download timed out after {self.timeout:g}s") from exc
        except httpx.TimeoutException as exc:
            logger.error("Download of %s timed out: %s", sanitized, type(exc).__name__)
            raise FetchError(f"Download timed out: {exc or type(exc).__name__}") from exc
        except httpx.InvalidURL as exc:
            raise FetchError(f"Invalid URL: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.error("Download of %s failed: %s", sanitized, exc)
            raise FetchError(f"Request failed: {exc or type(exc).__name__}") from exc

        logger.info("Downloaded %.2f MB from %s", len(data) / 1024 / 1024, sanitized)
        return data

    async def _download(
        self,
        client: httpx.AsyncClient,
        url: str,
        on_progress: ProgressCallback | None,
    ) -> bytes:
        async with client.stream("GET", url, headers=HEADERS) as response:
            if not response.is_success:
                status = response.status_code
                raise FetchError(
                    f"HTTP {status}: {response.reason_phrase}",
                    status_code=status,
                )

            total = _content_length(response)
            buffer = bytearray()
            last_reported = -1

            # Raw bytes: the payload itself is gzip, Content-Encoding must not unwrap it
            async for chunk in response.aiter_raw(self.chunk_size):
                buffer.extend(chunk)
                loaded = len(buffer)

                if total:
                    percent = min(100, round(loaded / total * 100))
                    if percent != last_reported:
                        last_reported = percent
                        emit_progress(
                            on_progress,
                            ProgressEvent(ProgressStage.DOWNLOADING, percent, f"Downloading... {percent}%"),
                        )
                elif loaded // _UNKNOWN_SIZE_REPORT_BYTES != last_reported:
                    last_reported = loaded // _UNKNOWN_SIZE_REPORT_BYTES
                    emit_progress(
                        on_progress,
                        ProgressEvent(
                            ProgressStage.DOWNLOADING,
                            None,
                            f"Downloading... {loaded / 1024 / 1024:.1f} MB",
                        ),
                    )

            return bytes(buffer)


class ProxyTransport:
    """Routes requests through a `{URL}` template, e.g. 'https://proxy/raw?url={URL}'."""

    def __init__(self, template: str, inner: Transport) -> None:
        if PROXY_URL_PLACEHOLDER not in template:
            raise ValidationError(
                f"Proxy URL template must contain {PROXY_URL_PLACEHOLDER}",
                context={"template": template},
            )
        self.template = template
        self.inner = inner

    def rewrite(self, url: str) -> str:
        # Same character set as JavaScript's encodeURIComponent
        return self.template.replace(PROXY_URL_PLACEHOLDER, quote(url, safe="!*'()"))

    async def fetch(self, url: str, on_progress: ProgressCallback | None = None) -> bytes:
        proxied = self.rewrite(url)
        logger.debug("Routing %s through proxy", sanitize_url_for_logging(url))
        return await self.inner.fetch(proxied, on_progress)


def build_transport(epg_settings: EpgSettings, client: httpx.AsyncClient | None = None) -> Transport:
    """Pick the transport described by the persisted EPG settings."""
    direct = DirectTransport(client)
    if epg_settings.use_cors_proxy and epg_settings.cors_proxy_url_template:
        return ProxyTransport(epg_settings.cors_proxy_url_template, direct)
    return direct


def _content_length(response: httpx.Response) -> int:
    value = response.headers.get("content-length", "")
    return int(value) if value.isdigit() else 0

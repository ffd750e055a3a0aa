"""Tests for single-source refresh, batch refresh and source probing."""

import asyncio
import gzip
from datetime import timedelta

import httpx
import pytest

from epg_guide.exceptions import DecompressionError, FetchError, NotFoundError
from epg_guide.services import epg_fetch_service, epg_store_service, settings_service, source_registry_service
from epg_guide.services.fetch_coordinator import get_fetch_coordinator
from epg_guide.services.fetch_types import ProgressStage
from epg_guide.services.transport import DirectTransport

from conftest import NOW, gzip_xmltv, mock_transport, sample_payload


pytestmark = pytest.mark.usefixtures("db")

URL = "http://epg.example/guide.xml.gz"


async def test_refresh_stores_bundle_and_metadata():
    source = await source_registry_service.add_source("Src", URL)
    events = []

    parsed = await epg_fetch_service.refresh_source(
        source.id, events.append, transport=mock_transport({URL: sample_payload()})
    )

    assert (len(parsed.channels), len(parsed.programs)) == (2, 5)
    stored = await epg_store_service.get_for_source(source.id)
    assert len(stored.programs) == 5

    refreshed = await source_registry_service.get_source(source.id)
    assert refreshed.last_error is None
    assert refreshed.last_fetch_at is not None
    assert refreshed.last_success_at == refreshed.last_fetch_at
    assert (refreshed.channel_count, refreshed.program_count) == (2, 5)

    assert events[-1].stage is ProgressStage.COMPLETE
    assert events[-1].message == "EPG update complete!"
    assert ProgressStage.SAVING in {event.stage for event in events}


async def test_failed_refresh_keeps_previous_data():
    source = await source_registry_service.add_source("Src", URL)
    await epg_fetch_service.refresh_source(source.id, transport=mock_transport({URL: sample_payload()}))
    before = await source_registry_service.get_source(source.id)
    events = []

    with pytest.raises(FetchError):
        await epg_fetch_service.refresh_source(source.id, events.append, transport=mock_transport({URL: 503}))

    after = await source_registry_service.get_source(source.id)
    assert after.last_error == "HTTP 503: Service Unavailable"
    assert after.last_success_at == before.last_success_at
    assert after.program_count == 5
    assert len((await epg_store_service.get_for_source(source.id)).programs) == 5

    assert events[-1].stage is ProgressStage.ERROR
    assert events[-1].message == "HTTP 503: Service Unavailable"


async def test_decompression_failure_is_recorded():
    source = await source_registry_service.add_source("Src", URL)

    with pytest.raises(DecompressionError):
        await epg_fetch_service.refresh_source(source.id, transport=mock_transport({URL: b"<tv/>"}))

    assert (await source_registry_service.get_source(source.id)).last_error == "Payload is not a gzip stream"
    assert await epg_store_service.get_for_source(source.id) is None


async def test_refresh_unknown_source_raises_not_found():
    with pytest.raises(NotFoundError):
        await epg_fetch_service.refresh_source("missing", transport=mock_transport({}))


async def test_refresh_all_isolates_failures():
    urls = [f"http://epg.example/{i}.xml.gz" for i in range(1, 4)]
    sources = [await source_registry_service.add_source(f"S{i}", url) for i, url in enumerate(urls, start=1)]
    # Source 2 has an earlier good snapshot of one channel and two programs
    await epg_fetch_service.refresh_source(
        sources[1].id,
        transport=mock_transport({urls[1]: gzip_xmltv(
            [("old", "Old")],
            [("old", NOW, NOW + timedelta(hours=1), "A"), ("old", NOW + timedelta(hours=1), NOW + timedelta(hours=2), "B")],
        )}),
    )
    prior = await source_registry_service.get_source(sources[1].id)
    seen = []
    transport = mock_transport({urls[0]: sample_payload(), urls[1]: 500, urls[2]: sample_payload()}, seen)

    result = await epg_fetch_service.refresh_all_enabled(transport=transport)

    assert seen == urls
    assert result["status"] == "success"
    assert (result["sources_processed"], result["sources_succeeded"], result["sources_failed"]) == (3, 2, 1)
    assert [detail["status"] for detail in result["source_details"]] == ["success", "failed", "success"]
    assert result["source_details"][1]["error"] == "HTTP 500: Internal Server Error"

    for healthy in (sources[0], sources[2]):
        refreshed = await source_registry_service.get_source(healthy.id)
        assert refreshed.last_success_at is not None
        assert refreshed.last_error is None
        assert (refreshed.channel_count, refreshed.program_count) == (2, 5)

    failed = await source_registry_service.get_source(sources[1].id)
    assert failed.last_error == "HTTP 500: Internal Server Error"
    assert failed.last_success_at == prior.last_success_at
    assert (failed.channel_count, failed.program_count) == (1, 2)
    assert [p.title for p in (await epg_store_service.get_for_source(sources[1].id)).programs] == ["A", "B"]

    stored = await epg_store_service.get_all()
    assert set(stored) == {source.id for source in sources}


async def test_settings_failure_still_ends_with_error_event(monkeypatch):
    source = await source_registry_service.add_source("Src", URL)

    async def unavailable():
        raise RuntimeError("settings unavailable")

    monkeypatch.setattr(settings_service, "get_settings", unavailable)
    events = []

    with pytest.raises(RuntimeError):
        await epg_fetch_service.refresh_source(source, events.append, transport=mock_transport({}))

    assert events[-1].stage is ProgressStage.ERROR
    assert events[-1].message == "settings unavailable"
    assert (await source_registry_service.get_source(source.id)).last_error == "settings unavailable"


async def test_unknown_source_ends_with_error_event():
    events = []

    with pytest.raises(NotFoundError):
        await epg_fetch_service.refresh_source("missing", events.append, transport=mock_transport({}))

    assert [event.stage for event in events] == [ProgressStage.ERROR]


async def test_refresh_all_skips_disabled_sources():
    enabled = await source_registry_service.add_source("On", "http://epg.example/on.gz")
    disabled = await source_registry_service.add_source("Off", "http://epg.example/off.gz")
    await source_registry_service.set_enabled(disabled.id, False)
    seen = []

    result = await epg_fetch_service.refresh_all_enabled(
        transport=mock_transport({"http://epg.example/on.gz": sample_payload()}, seen)
    )

    assert seen == ["http://epg.example/on.gz"]
    assert result["sources_processed"] == 1
    assert set(await epg_store_service.get_all()) == {enabled.id}


async def test_refresh_all_is_skipped_while_another_batch_runs():
    coordinator = get_fetch_coordinator()
    started = asyncio.Event()
    release = asyncio.Event()

    async def long_batch():
        started.set()
        await release.wait()
        return {"status": "success"}

    running = asyncio.create_task(coordinator.execute(long_batch))
    await started.wait()

    result = await epg_fetch_service.refresh_all_enabled(transport=mock_transport({}))

    release.set()
    assert (await running)["status"] == "success"
    assert result["status"] == "skipped"


async def test_test_source_reports_counts_without_saving():
    events = []

    result = await epg_fetch_service.test_source(URL, events.append, transport=mock_transport({URL: sample_payload()}))

    assert result.success is True
    assert (result.channel_count, result.program_count) == (2, 5)
    assert result.message == "Successfully parsed 2 channels and 5 programs"
    assert events[-1].stage is ProgressStage.COMPLETE
    assert await source_registry_service.list_sources() == []
    assert await epg_store_service.get_all() == {}


async def test_test_source_returns_error_instead_of_raising():
    result = await epg_fetch_service.test_source(URL, transport=mock_transport({URL: gzip.compress(b"<tv>")}))

    assert result.success is False
    assert result.error.startswith("XML parsing error")


async def test_cancelled_refresh_leaves_store_untouched():
    source = await source_registry_service.add_source("Src", URL)
    await epg_fetch_service.refresh_source(
        source.id,
        transport=mock_transport({URL: gzip_xmltv([("old", "Old")], [])}),
    )
    request_seen = asyncio.Event()

    async def hanging(request):
        request_seen.set()
        await asyncio.Event().wait()

    transport = DirectTransport(httpx.AsyncClient(transport=httpx.MockTransport(hanging)))
    events = []
    task = asyncio.create_task(epg_fetch_service.refresh_source(source.id, events.append, transport=transport))
    await request_seen.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    stored = await epg_store_service.get_for_source(source.id)
    assert [c.id for c in stored.channels] == ["old"]
    assert events[-1].stage is ProgressStage.ERROR
    assert events[-1].message == "Refresh cancelled"

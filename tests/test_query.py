"""Tests for channel-name matching and now/next program lookup."""

from datetime import timedelta

import pytest

from epg_guide.config import settings
from epg_guide.schemas import EpgProgram
from epg_guide.services import epg_query_service, epg_store_service, source_registry_service
from epg_guide.services.epg_query_service import calculate_progress, names_match

from conftest import NOW, bundle, program


T = NOW


async def _source_with(channels, programs, name="Src"):
    source = await source_registry_service.add_source(name, f"http://epg.example/{name}.gz")
    await epg_store_service.save(source.id, bundle(channels, programs))
    return source


class TestNamesMatch:

    @pytest.mark.parametrize("query,display,expected", [
        ("Kanal 1", "Kanal 1 HD", True),
        ("Kanal 1 HD", "kanal 1", True),
        ("  SPORT zwei ", "Sport Zwei", True),
        ("Total Mismatch", "Kanal 1 HD", False),
        ("", "Kanal 1 HD", False),
        ("Kanal 1", "   ", False),
    ])
    def test_containment_either_way(self, query, display, expected):
        assert names_match(query, display) is expected


class TestCalculateProgress:

    def _program(self, start, stop):
        return EpgProgram(channel_id="c", start=start, stop=stop)

    def test_half_way(self):
        assert calculate_progress(self._program(T - timedelta(minutes=30), T + timedelta(minutes=30)), now=T) == 50

    def test_rounds_half_up(self):
        # 1 of 8 minutes elapsed is 12.5%
        assert calculate_progress(self._program(T - timedelta(minutes=1), T + timedelta(minutes=7)), now=T) == 13

    def test_bounds(self):
        program = self._program(T, T + timedelta(hours=1))
        assert calculate_progress(program, now=T) == 0
        assert calculate_progress(program, now=T + timedelta(hours=1)) == 100

    def test_outside_interval_is_zero(self):
        program = self._program(T + timedelta(hours=1), T + timedelta(hours=2))
        assert calculate_progress(program, now=T) == 0
        assert calculate_progress(program, now=T + timedelta(hours=3)) == 0

    def test_unknown_times_are_zero(self):
        assert calculate_progress(self._program(None, T), now=T) == 0


@pytest.mark.usefixtures("db")
class TestGetChannelPrograms:

    async def test_fuzzy_match_and_window(self):
        await _source_with(
            [("one.de", "Kanal 1 HD"), ("two.de", "Sport Zwei")],
            [
                program("one.de", T + timedelta(hours=2), T + timedelta(hours=3), "Later"),
                program("one.de", T - timedelta(minutes=10), T + timedelta(minutes=5), "Now"),
                program("one.de", T - timedelta(hours=2), T - timedelta(hours=1), "Over"),
                program("two.de", T, T + timedelta(hours=1), "Other channel"),
            ],
        )

        narrow = await epg_query_service.get_channel_programs("Kanal 1", 1, now=T)
        wide = await epg_query_service.get_channel_programs("Kanal 1", 3, now=T)

        assert [p.title for p in narrow] == ["Now"]
        assert [p.title for p in wide] == ["Now", "Later"]
        assert wide[0].channel_name == "Kanal 1 HD"
        assert wide[0].start == T - timedelta(minutes=10)

    async def test_no_match_returns_empty(self):
        await _source_with(
            [("one.de", "Kanal 1 HD")],
            [program("one.de", T, T + timedelta(hours=1))],
        )

        assert await epg_query_service.get_channel_programs("Total Mismatch", 24, now=T) == []

    async def test_blank_name_matches_nothing(self):
        await _source_with(
            [("one.de", "Kanal 1 HD"), ("blank", "")],
            [
                program("one.de", T, T + timedelta(hours=1)),
                program("blank", T, T + timedelta(hours=1)),
            ],
        )

        assert await epg_query_service.get_channel_programs("   ", 24, now=T) == []
        matched = await epg_query_service.get_channel_programs("Kanal 1", 24, now=T)
        assert {p.channel_id for p in matched} == {"one.de"}

    async def test_window_boundaries_are_exclusive(self):
        await _source_with(
            [("c", "Channel")],
            [
                program("c", T - timedelta(hours=1), T, "Ends now"),
                program("c", T + timedelta(hours=1), T + timedelta(hours=2), "Starts at window end"),
                program("c", T, T + timedelta(hours=1), "Starts now"),
            ],
        )

        programs = await epg_query_service.get_channel_programs("Channel", 1, now=T)

        assert [p.title for p in programs] == ["Starts now"]

    async def test_invalid_times_are_excluded(self):
        await _source_with(
            [("c", "Channel")],
            [
                program("c", None, T + timedelta(hours=1), "No start"),
                program("c", T, None, "No stop"),
                program("c", T + timedelta(minutes=30), T, "Backwards"),
                program("c", T, T + timedelta(hours=1), "Fine"),
            ],
        )

        programs = await epg_query_service.get_channel_programs("Channel", 24, now=T)

        assert [p.title for p in programs] == ["Fine"]

    async def test_results_from_several_sources_are_sorted_by_start(self):
        await _source_with(
            [("a", "News 24")],
            [program("a", T + timedelta(hours=1), T + timedelta(hours=2), "A late")],
            name="first",
        )
        await _source_with(
            [("b", "News 24 HD")],
            [program("b", T, T + timedelta(hours=1), "B early")],
            name="second",
        )

        programs = await epg_query_service.get_channel_programs("News 24", 24, now=T)

        assert [p.title for p in programs] == ["B early", "A late"]

    async def test_first_channel_with_repeated_id_decides_match(self):
        await _source_with(
            [("dup", "Other Name"), ("dup", "Kanal 1 HD")],
            [program("dup", T, T + timedelta(hours=1))],
        )

        assert await epg_query_service.get_channel_programs("Kanal 1", 24, now=T) == []

    async def test_disabled_sources_are_hidden(self):
        source = await _source_with(
            [("c", "Channel")],
            [program("c", T, T + timedelta(hours=1))],
        )
        await source_registry_service.set_enabled(source.id, False)

        assert await epg_query_service.get_channel_programs("Channel", 24, now=T) == []

    async def test_disabled_sources_visible_when_flag_off(self, monkeypatch):
        monkeypatch.setattr(settings, "epg_query_respects_enabled", False)
        source = await _source_with(
            [("c", "Channel")],
            [program("c", T, T + timedelta(hours=1))],
        )
        await source_registry_service.set_enabled(source.id, False)

        assert len(await epg_query_service.get_channel_programs("Channel", 24, now=T)) == 1


@pytest.mark.usefixtures("db")
class TestCurrentProgramAndGuide:

    async def test_current_program(self):
        await _source_with(
            [("c", "Channel")],
            [
                program("c", T - timedelta(minutes=30), T + timedelta(minutes=30), "Airing"),
                program("c", T + timedelta(minutes=30), T + timedelta(hours=1), "Next"),
            ],
        )

        current = await epg_query_service.get_current_program("Channel", now=T)

        assert current.title == "Airing"
        assert calculate_progress(current, now=T) == 50

    async def test_no_current_program_in_a_gap(self):
        await _source_with(
            [("c", "Channel")],
            [program("c", T + timedelta(minutes=10), T + timedelta(hours=1), "Soon")],
        )

        assert await epg_query_service.get_current_program("Channel", now=T) is None

    async def test_guide_lists_current_and_upcoming(self):
        await _source_with(
            [("c", "Channel")],
            [
                program("c", T - timedelta(minutes=15), T + timedelta(minutes=45), "Airing"),
                *[
                    program("c", T + timedelta(minutes=45 + 30 * i), T + timedelta(minutes=75 + 30 * i), f"Next {i}")
                    for i in range(5)
                ],
            ],
        )

        guide = await epg_query_service.get_channel_guide("Channel", 6, 3, now=T)

        assert guide.current.title == "Airing"
        assert guide.progress == 25
        assert [p.title for p in guide.upcoming] == ["Next 0", "Next 1", "Next 2"]

    async def test_guide_without_data(self):
        guide = await epg_query_service.get_channel_guide("Channel", now=T)

        assert guide.current is None
        assert guide.progress == 0
        assert guide.upcoming == []

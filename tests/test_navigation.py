from __future__ import annotations

import asyncio
import threading

import pytest

from tanzil.content import ContentFetchError, VerseRecord
from tanzil.locator import VerseLocator
from tanzil.navigation import NavigationController, VerseSequence


def _verse(chapter: int, number: int, **extra) -> VerseRecord:
    return VerseRecord(
        global_key=f"{chapter}:{number}",
        chapter=chapter,
        verse_number=number,
        primary_text=f"text {chapter}:{number}",
        audio_ref=f"a/{chapter:03d}{number:03d}.mp3",
        **extra,
    )


class _FakeClient:
    def __init__(self, data: dict[tuple[str, int], list[VerseRecord]] | None = None) -> None:
        self.data = data or {}
        self.calls: list[tuple[VerseLocator, int, str]] = []
        self.failing: set[tuple[str, int]] = set()
        self.gates: dict[tuple[str, int], threading.Event] = {}

    def fetch_verses(self, locator, *, recitation_id=7, script="uthmani"):
        self.calls.append((locator, recitation_id, script))
        key = (locator.mode, locator.id)
        gate = self.gates.get(key)
        if gate is not None:
            gate.wait(5)
        if key in self.failing:
            raise ContentFetchError(f"cannot fetch {key}")
        return list(self.data.get(key, [_verse(locator.id if locator.mode == "chapter" else 1, 1)]))


def test_select_chapter_installs_sequence() -> None:
    client = _FakeClient({("chapter", 2): [_verse(2, 1), _verse(2, 2)]})
    nav = NavigationController(client)
    seen: list[VerseSequence] = []
    nav.on_sequence(seen.append)

    sequence = asyncio.run(nav.select_chapter(2))

    assert sequence is nav.sequence
    assert [v.global_key for v in nav.sequence] == ["2:1", "2:2"]
    assert nav.locator == VerseLocator("chapter", 2)
    assert nav.chapter == 2
    assert not nav.loading
    assert seen == [sequence]


def test_select_out_of_range_is_rejected_without_state_change() -> None:
    nav = NavigationController(_FakeClient())
    with pytest.raises(ValueError):
        asyncio.run(nav.select_page(605))
    assert nav.locator == VerseLocator("chapter", 1)
    assert nav.sequence.locator is None


def test_division_selection_moves_chapter_anchor() -> None:
    client = _FakeClient(
        {("division", 2): [_verse(2, 142, division_number=2, page_number=22), _verse(2, 143)]}
    )
    nav = NavigationController(client)
    asyncio.run(nav.select_division(2))
    assert nav.mode == "division"
    assert nav.chapter == 2
    assert nav.locator_for("chapter") == VerseLocator("chapter", 2)
    assert nav.locator_for("page") == VerseLocator("page", 22)
    assert nav.show_bismillah


def test_chapter_selection_resyncs_other_counters_when_known() -> None:
    client = _FakeClient({("chapter", 9): [_verse(9, 1, division_number=10, page_number=187)]})
    nav = NavigationController(client)
    asyncio.run(nav.select_chapter(9))
    assert nav.locator_for("division") == VerseLocator("division", 10)
    assert nav.locator_for("page") == VerseLocator("page", 187)
    assert not nav.show_bismillah


def test_counters_unchanged_when_provider_omits_numbers() -> None:
    client = _FakeClient({("chapter", 3): [_verse(3, 1)]})
    nav = NavigationController(client)

    async def scenario() -> None:
        await nav.select_page(40)
        await nav.select_chapter(3)

    asyncio.run(scenario())
    assert nav.locator_for("page") == VerseLocator("page", 40)
    assert nav.locator_for("division") == VerseLocator("division", 1)


def test_empty_sequence_keeps_anchor() -> None:
    client = _FakeClient({("chapter", 5): [_verse(5, 1)], ("page", 300): []})
    nav = NavigationController(client)

    async def scenario() -> None:
        await nav.select_chapter(5)
        await nav.select_page(300)

    asyncio.run(scenario())
    assert len(nav.sequence) == 0
    assert nav.chapter == 5


@pytest.mark.parametrize(("mode", "limit"), [("chapter", 114), ("division", 30), ("page", 604)])
def test_advance_and_retreat_at_bounds_are_noops(mode: str, limit: int) -> None:
    client = _FakeClient()
    nav = NavigationController(client)

    async def scenario() -> None:
        await nav.select(VerseLocator(mode, limit))
        assert await nav.advance() is None
        assert nav.locator == VerseLocator(mode, limit)
        await nav.select(VerseLocator(mode, 1))
        assert await nav.retreat() is None
        assert nav.locator == VerseLocator(mode, 1)

    asyncio.run(scenario())
    assert len(client.calls) == 2


def test_advance_and_retreat_step_in_active_mode() -> None:
    client = _FakeClient()
    nav = NavigationController(client)

    async def scenario() -> None:
        await nav.select_division(4)
        await nav.advance()
        assert nav.locator == VerseLocator("division", 5)
        await nav.retreat()
        await nav.retreat()
        assert nav.locator == VerseLocator("division", 3)

    asyncio.run(scenario())


def test_fetch_failure_keeps_previous_sequence() -> None:
    client = _FakeClient({("chapter", 1): [_verse(1, 1)]})
    client.failing.add(("chapter", 2))
    nav = NavigationController(client)

    async def scenario() -> None:
        await nav.select_chapter(1)
        with pytest.raises(ContentFetchError):
            await nav.select_chapter(2)

    asyncio.run(scenario())
    assert [v.global_key for v in nav.sequence] == ["1:1"]
    assert not nav.loading
    assert nav.chapter == 1


def test_unexpected_client_error_clears_loading() -> None:
    class _BrokenClient(_FakeClient):
        def fetch_verses(self, locator, *, recitation_id=7, script="uthmani"):
            raise RuntimeError("connection pool exhausted")

    nav = NavigationController(_BrokenClient())
    with pytest.raises(RuntimeError):
        asyncio.run(nav.select_chapter(2))
    assert nav.loading is False
    assert nav.sequence.first() is None


def test_stale_fetch_is_discarded() -> None:
    client = _FakeClient({("chapter", 1): [_verse(1, 1)], ("chapter", 2): [_verse(2, 1)]})
    gate_a = threading.Event()
    client.gates[("chapter", 1)] = gate_a
    nav = NavigationController(client)
    installed: list[VerseSequence] = []
    nav.on_sequence(installed.append)

    async def scenario():
        task_a = asyncio.create_task(nav.select_chapter(1))
        await asyncio.sleep(0)
        result_b = await nav.select_chapter(2)
        assert nav.loading is False
        gate_a.set()
        result_a = await task_a
        return result_a, result_b

    result_a, result_b = asyncio.run(scenario())
    assert result_a is None
    assert result_b is not None
    assert nav.sequence is result_b
    assert [v.global_key for v in nav.sequence] == ["2:1"]
    assert installed == [result_b]


def test_stale_failure_is_discarded() -> None:
    client = _FakeClient({("chapter", 2): [_verse(2, 1)]})
    gate_a = threading.Event()
    client.gates[("chapter", 1)] = gate_a
    client.failing.add(("chapter", 1))
    nav = NavigationController(client)

    async def scenario():
        task_a = asyncio.create_task(nav.select_chapter(1))
        await asyncio.sleep(0)
        await nav.select_chapter(2)
        gate_a.set()
        return await task_a

    assert asyncio.run(scenario()) is None
    assert [v.global_key for v in nav.sequence] == ["2:1"]


def test_loading_flag_tracks_inflight_fetch() -> None:
    client = _FakeClient()
    gate = threading.Event()
    client.gates[("page", 10)] = gate
    nav = NavigationController(client)

    async def scenario() -> None:
        task = asyncio.create_task(nav.select_page(10))
        await asyncio.sleep(0)
        assert nav.loading is True
        gate.set()
        await task
        assert nav.loading is False

    asyncio.run(scenario())


def test_recitation_and_script_changes_refetch() -> None:
    client = _FakeClient()
    nav = NavigationController(client)

    async def scenario() -> None:
        await nav.select_chapter(3)
        await nav.set_recitation(12)
        await nav.set_script("indopak")

    asyncio.run(scenario())
    assert client.calls[-2] == (VerseLocator("chapter", 3), 12, "uthmani")
    assert client.calls[-1] == (VerseLocator("chapter", 3), 12, "indopak")
    with pytest.raises(ValueError):
        asyncio.run(nav.set_script("naskh"))


def test_navigate_listeners_fire_before_fetch() -> None:
    events: list[str] = []

    class _RecordingClient(_FakeClient):
        def fetch_verses(self, locator, **kwargs):
            events.append(f"fetch {locator.label()}")
            return super().fetch_verses(locator, **kwargs)

    nav = NavigationController(_RecordingClient())
    nav.on_navigate(lambda locator: events.append(f"navigate {locator.label()}"))
    asyncio.run(nav.select_page(2))
    assert events == ["navigate page 2", "fetch page 2"]


def test_sequence_after_crosses_chapter_boundary() -> None:
    sequence = VerseSequence(
        VerseLocator("division", 1), (_verse(1, 6), _verse(1, 7), _verse(2, 1))
    )
    assert sequence.after(sequence.verses[1]).global_key == "2:1"
    assert sequence.after(sequence.verses[2]) is None
    assert sequence.find(1).global_key == "2:1"
    assert sequence.find(7, chapter=2) is None

from __future__ import annotations

import pytest

from tanzil.content import VerseRecord
from tanzil.locator import VerseLocator
from tanzil.navigation import VerseSequence
from tanzil.playback import AudioUnavailableError, PlaybackSequencer, PlaybackState
from tanzil.store import PersistenceError


def _verse(chapter: int, number: int, audio: str | None = "default") -> VerseRecord:
    if audio == "default":
        audio = f"Alafasy/mp3/{chapter:03d}{number:03d}.mp3"
    return VerseRecord(
        global_key=f"{chapter}:{number}",
        chapter=chapter,
        verse_number=number,
        primary_text=f"text {chapter}:{number}",
        audio_ref=audio,
    )


def _sequence(*verses: VerseRecord, locator: VerseLocator | None = None) -> VerseSequence:
    return VerseSequence(locator or VerseLocator("chapter", verses[0].chapter), tuple(verses))


class _FakeHandle:
    def __init__(self, engine: "_FakeEngine", url: str, on_finished, on_failed) -> None:
        self.engine = engine
        self.url = url
        self.on_finished = on_finished
        self.on_failed = on_failed
        self.paused = False
        self.released = False
        self.started = False

    def start(self) -> None:
        if self.url in self.engine.broken:
            raise AudioUnavailableError(f"cannot decode {self.url}")
        self.started = True

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def release(self) -> None:
        self.released = True

    def finish(self) -> None:
        self.on_finished()

    def fail(self, exc: Exception) -> None:
        self.on_failed(exc)


class _FakeEngine:
    def __init__(self) -> None:
        self.handles: list[_FakeHandle] = []
        self.broken: set[str] = set()

    def open(self, url: str, on_finished, on_failed) -> _FakeHandle:
        handle = _FakeHandle(self, url, on_finished, on_failed)
        self.handles.append(handle)
        return handle

    def active_handles(self) -> list[_FakeHandle]:
        return [handle for handle in self.handles if not handle.released]


class _FakeTracker:
    def __init__(self) -> None:
        self.recorded: list[tuple[int, int]] = []
        self.read_only = False

    def record(self, chapter: int, verse_number: int) -> None:
        if self.read_only:
            raise PersistenceError("state directory is read-only")
        self.recorded.append((chapter, verse_number))


def _sequencer(*verses: VerseRecord):
    engine = _FakeEngine()
    tracker = _FakeTracker()
    sequencer = PlaybackSequencer(engine, tracker=tracker)
    sequencer.load(_sequence(*verses))
    return sequencer, engine, tracker


def test_play_sets_state_and_records_position() -> None:
    sequencer, engine, tracker = _sequencer(_verse(2, 6), _verse(2, 7))
    state = sequencer.play(7)
    assert state == PlaybackState(status="playing", active_verse=7, active_chapter=2)
    assert state.active_key == "2:7"
    assert engine.handles[0].url == "https://audio.qurancdn.com/Alafasy/mp3/002007.mp3"
    assert tracker.recorded == [(2, 7)]


def test_at_most_one_handle_after_repeated_plays() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2), _verse(1, 3))
    for verse_number in (1, 2, 3, 2, 1):
        sequencer.play(verse_number)
        assert len(engine.active_handles()) == 1
    assert all(handle.released for handle in engine.handles[:-1])


def test_auto_advance_walks_sequence_then_idles() -> None:
    sequencer, engine, tracker = _sequencer(_verse(1, 1), _verse(1, 2), _verse(1, 3))
    sequencer.play(1)
    engine.handles[-1].finish()
    assert sequencer.state.status == "playing"
    assert sequencer.state.active_verse == 2
    engine.handles[-1].finish()
    assert sequencer.state.active_verse == 3
    engine.handles[-1].finish()
    assert sequencer.state == PlaybackState()
    assert not sequencer.has_handle
    assert engine.active_handles() == []
    assert tracker.recorded == [(1, 1), (1, 2), (1, 3)]


def test_auto_advance_crosses_chapters_in_division_sequence() -> None:
    engine = _FakeEngine()
    sequencer = PlaybackSequencer(engine)
    sequencer.load(
        _sequence(_verse(1, 7), _verse(2, 1), locator=VerseLocator("division", 1))
    )
    sequencer.play(7)
    engine.handles[-1].finish()
    assert sequencer.state.active_key == "2:1"


def test_stale_completion_is_ignored() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2), _verse(1, 3))
    sequencer.play(1)
    first = engine.handles[-1]
    sequencer.play(3)
    first.finish()
    assert sequencer.state.active_verse == 3
    assert len(engine.handles) == 2


def test_completion_after_stop_does_not_advance() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2))
    sequencer.play(1)
    handle = engine.handles[-1]
    sequencer.stop()
    handle.finish()
    assert sequencer.state == PlaybackState()
    assert len(engine.handles) == 1


def test_completion_while_paused_does_not_advance() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2))
    sequencer.play(1)
    sequencer.toggle()
    engine.handles[-1].finish()
    assert sequencer.state.status == "paused"
    assert sequencer.state.active_verse == 1


def test_toggle_cycles_idle_playing_paused() -> None:
    sequencer, engine, _ = _sequencer(_verse(4, 1), _verse(4, 2))
    assert sequencer.toggle().status == "playing"
    assert sequencer.state.active_verse == 1
    handle = engine.handles[-1]

    assert sequencer.toggle().status == "paused"
    assert handle.paused and not handle.released

    assert sequencer.toggle().status == "playing"
    assert not handle.paused
    assert len(engine.handles) == 1


def test_toggle_with_empty_sequence_stays_idle() -> None:
    engine = _FakeEngine()
    sequencer = PlaybackSequencer(engine)
    assert sequencer.toggle() == PlaybackState()
    assert engine.handles == []


def test_stop_releases_handle() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1))
    sequencer.play(1)
    assert sequencer.stop() == PlaybackState()
    assert engine.handles[0].released
    assert not sequencer.has_handle


def test_missing_audio_reference_returns_to_idle() -> None:
    sequencer, engine, tracker = _sequencer(_verse(1, 1), _verse(1, 2, audio=None))
    sequencer.play(1)
    with pytest.raises(AudioUnavailableError):
        sequencer.play(2)
    assert sequencer.state == PlaybackState()
    assert engine.active_handles() == []
    assert tracker.recorded == [(1, 1)]


def test_unknown_verse_raises() -> None:
    sequencer, _, _ = _sequencer(_verse(1, 1))
    with pytest.raises(AudioUnavailableError):
        sequencer.play(5)
    assert sequencer.state.status == "idle"


def test_engine_rejection_leaves_no_dangling_handle() -> None:
    sequencer, engine, tracker = _sequencer(_verse(1, 1))
    engine.broken.add("https://audio.qurancdn.com/Alafasy/mp3/001001.mp3")
    with pytest.raises(AudioUnavailableError):
        sequencer.play(1)
    assert sequencer.state == PlaybackState()
    assert engine.active_handles() == []
    assert tracker.recorded == []


def test_auto_advance_failure_reported_to_error_listener() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2, audio=None))
    errors: list[Exception] = []
    sequencer.on_error(errors.append)
    sequencer.play(1)
    engine.handles[-1].finish()
    assert len(errors) == 1
    assert isinstance(errors[0], AudioUnavailableError)
    assert sequencer.state == PlaybackState()


def test_auto_advance_failure_without_listener_propagates() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2, audio=None))
    sequencer.play(1)
    with pytest.raises(AudioUnavailableError):
        engine.handles[-1].finish()


def test_loading_new_sequence_stops_playback() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1))
    states: list[PlaybackState] = []
    sequencer.on_state(states.append)
    sequencer.play(1)
    sequencer.load(_sequence(_verse(2, 1)))
    assert sequencer.state == PlaybackState()
    assert engine.active_handles() == []
    assert [state.status for state in states] == ["playing", "idle"]


def test_custom_audio_origin() -> None:
    engine = _FakeEngine()
    sequencer = PlaybackSequencer(engine, audio_origin="https://mirror.test/audio")
    sequencer.load(_sequence(_verse(1, 1)))
    sequencer.play(1)
    assert engine.handles[0].url == "https://mirror.test/audio/Alafasy/mp3/001001.mp3"


def test_late_engine_failure_halts_and_reports() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2))
    errors: list[Exception] = []
    sequencer.on_error(errors.append)
    sequencer.play(1)
    engine.handles[-1].fail(AudioUnavailableError("download failed"))
    assert sequencer.state == PlaybackState()
    assert engine.active_handles() == []
    assert [str(exc) for exc in errors] == ["download failed"]


def test_failure_from_replaced_handle_is_ignored() -> None:
    sequencer, engine, _ = _sequencer(_verse(1, 1), _verse(1, 2))
    errors: list[Exception] = []
    sequencer.on_error(errors.append)
    sequencer.play(1)
    replaced = engine.handles[-1]
    sequencer.play(2)
    replaced.fail(AudioUnavailableError("too late"))
    assert errors == []
    assert sequencer.state.active_key == "1:2"


def test_position_write_failure_during_auto_advance_is_reported() -> None:
    sequencer, engine, tracker = _sequencer(_verse(1, 1), _verse(1, 2))
    errors: list[Exception] = []
    sequencer.on_error(errors.append)
    sequencer.play(1)
    tracker.read_only = True
    engine.handles[-1].finish()
    assert len(errors) == 1
    assert isinstance(errors[0], PersistenceError)
    assert sequencer.state.active_key == "1:2"

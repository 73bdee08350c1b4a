from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Callable, Literal, Protocol

from .content import AUDIO_CDN_ORIGIN, VerseRecord, resolve_audio_url
from .logging_utils import _debug_log
from .navigation import VerseSequence
from .store import PersistenceError

PlaybackStatus = Literal["idle", "playing", "paused"]


class AudioUnavailableError(RuntimeError):
    """Raised when a verse has no playable audio or the engine refuses it."""


class AudioHandle(Protocol):
    def start(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def release(self) -> None: ...


class AudioEngine(Protocol):
    def open(
        self,
        url: str,
        on_finished: Callable[[], None],
        on_failed: Callable[[Exception], None],
    ) -> AudioHandle:
        """
        Prepare ``url`` for playback. ``on_finished`` must be called once when
        the audio plays through to its natural end, never after pause or release.
        ``start`` returns without waiting for the audio; a failure found after
        it returned goes to ``on_failed`` instead.
        """
        ...


class PositionRecorder(Protocol):
    def record(self, chapter: int, verse_number: int) -> object: ...


@dataclass(frozen=True, slots=True)
class PlaybackState:
    status: PlaybackStatus = "idle"
    active_verse: int | None = None
    active_chapter: int | None = None

    @property
    def active_key(self) -> str | None:
        if self.active_verse is None or self.active_chapter is None:
            return None
        return f"{self.active_chapter}:{self.active_verse}"


StateListener = Callable[[PlaybackState], None]
ErrorListener = Callable[[Exception], None]


class PlaybackSequencer:
    """
    Plays one verse at a time from the loaded sequence and moves on to the
    following verse when the current one finishes on its own.

    At most one audio handle is held; every start releases the previous one
    first. Completion callbacks carry the generation they were issued for so
    that a callback from a replaced handle is ignored.
    """

    def __init__(
        self,
        engine: AudioEngine,
        *,
        tracker: PositionRecorder | None = None,
        audio_origin: str = AUDIO_CDN_ORIGIN,
    ) -> None:
        self._engine = engine
        self._tracker = tracker
        self.audio_origin = audio_origin
        self._sequence = VerseSequence(None)
        self._handle: AudioHandle | None = None
        self._generation = 0
        self._status: PlaybackStatus = "idle"
        self._active: VerseRecord | None = None
        self._state_listeners: list[StateListener] = []
        self._error_listeners: list[ErrorListener] = []

    @property
    def state(self) -> PlaybackState:
        active = self._active
        return PlaybackState(
            status=self._status,
            active_verse=active.verse_number if active else None,
            active_chapter=active.chapter if active else None,
        )

    @property
    def sequence(self) -> VerseSequence:
        return self._sequence

    @property
    def has_handle(self) -> bool:
        return self._handle is not None

    def on_state(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def load(self, sequence: VerseSequence) -> None:
        """Replace the catalogue; anything still playing from the old one stops."""
        if sequence is self._sequence:
            return
        if self._handle is not None or self._status != "idle":
            self._halt()
        self._sequence = sequence

    def play(self, verse_number: int, *, chapter: int | None = None) -> PlaybackState:
        record = self._sequence.find(verse_number, chapter)
        if record is None:
            self._halt()
            where = f"{chapter}:{verse_number}" if chapter is not None else str(verse_number)
            raise AudioUnavailableError(f"Verse {where} is not in the loaded sequence")
        self._start(record)
        return self.state

    def toggle(self) -> PlaybackState:
        if self._status == "playing" and self._handle is not None:
            self._handle.pause()
            self._status = "paused"
            self._notify()
        elif self._status == "paused" and self._handle is not None:
            try:
                self._handle.resume()
            except AudioUnavailableError:
                self._halt()
                raise
            self._status = "playing"
            self._notify()
        else:
            first = self._sequence.first()
            if first is not None:
                self._start(first)
        return self.state

    def stop(self) -> PlaybackState:
        self._halt()
        return self.state

    def _start(self, record: VerseRecord) -> None:
        url = resolve_audio_url(record.audio_ref, self.audio_origin)
        if url is None:
            self._halt()
            raise AudioUnavailableError(f"No audio reference for verse {record.global_key}")
        self._release()
        self._generation += 1
        finished = partial(self._handle_finished, self._generation)
        failed = partial(self._handle_failed, self._generation)
        try:
            self._handle = self._engine.open(url, finished, failed)
            self._handle.start()
        except AudioUnavailableError:
            self._halt()
            raise
        _debug_log(f"Playing {record.global_key} from {url}")
        self._status = "playing"
        self._active = record
        self._notify()
        if self._tracker is not None:
            self._tracker.record(record.chapter, record.verse_number)

    def _release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        self._generation += 1
        handle.release()

    def _halt(self) -> None:
        changed = self._status != "idle" or self._active is not None
        self._release()
        self._status = "idle"
        self._active = None
        if changed:
            self._notify()

    def _handle_finished(self, generation: int) -> None:
        if generation != self._generation or self._status != "playing":
            _debug_log(f"Ignoring completion from superseded handle #{generation}")
            return
        finished = self._active
        following = self._sequence.after(finished) if finished is not None else None
        if following is None:
            _debug_log("Reached the end of the loaded sequence")
            self._halt()
            return
        try:
            self._start(following)
        except (AudioUnavailableError, PersistenceError) as exc:
            self._report(exc)

    def _handle_failed(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            _debug_log(f"Ignoring failure from superseded handle #{generation}: {exc}")
            return
        self._halt()
        self._report(exc)

    def _report(self, exc: Exception) -> None:
        if not self._error_listeners:
            raise exc
        for listener in list(self._error_listeners):
            listener(exc)

    def _notify(self) -> None:
        state = self.state
        for listener in list(self._state_listeners):
            listener(state)

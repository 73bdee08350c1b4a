from __future__ import annotations

import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterator, Protocol, Sequence

from .content import (
    DEFAULT_RECITATION_ID,
    DEFAULT_SCRIPT,
    ContentFetchError,
    VerseRecord,
    script_field,
)
from .locator import MODE_LIMITS, LocatorTranslator, NavigationMode, VerseLocator
from .logging_utils import _debug_log


class VerseSource(Protocol):
    def fetch_verses(
        self,
        locator: VerseLocator,
        *,
        recitation_id: int = ...,
        script: str = ...,
    ) -> list[VerseRecord]: ...


@dataclass(frozen=True, slots=True)
class VerseSequence:
    """Verses for one locator, ordered by chapter then verse number."""

    locator: VerseLocator | None
    verses: tuple[VerseRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.verses)

    def __iter__(self) -> Iterator[VerseRecord]:
        return iter(self.verses)

    def first(self) -> VerseRecord | None:
        return self.verses[0] if self.verses else None

    def find(self, verse_number: int, chapter: int | None = None) -> VerseRecord | None:
        for verse in self.verses:
            if verse.verse_number != verse_number:
                continue
            if chapter is None or verse.chapter == chapter:
                return verse
        return None

    def after(self, verse: VerseRecord) -> VerseRecord | None:
        for index, candidate in enumerate(self.verses):
            if candidate.global_key == verse.global_key:
                if index + 1 < len(self.verses):
                    return self.verses[index + 1]
                return None
        return None


SequenceListener = Callable[[VerseSequence], None]
NavigateListener = Callable[[VerseLocator], None]


class NavigationController:
    """
    Owns the navigation mode, one locator per mode and the current sequence.

    Fetches run off the event loop; when several selections overlap only the
    most recent one is installed.
    """

    def __init__(
        self,
        client: VerseSource,
        *,
        recitation_id: int = DEFAULT_RECITATION_ID,
        script: str = DEFAULT_SCRIPT,
        translator: LocatorTranslator | None = None,
        executor: Executor | None = None,
    ) -> None:
        script_field(script)
        self._client = client
        self._executor = executor
        self.translator = translator or LocatorTranslator()
        self.recitation_id = recitation_id
        self.script = script
        self.mode: NavigationMode = "chapter"
        self._locators: dict[str, VerseLocator] = {
            mode: VerseLocator(mode, 1) for mode in MODE_LIMITS  # type: ignore[arg-type]
        }
        self.sequence = VerseSequence(None)
        self.loading = False
        self._request_id = 0
        self._sequence_listeners: list[SequenceListener] = []
        self._navigate_listeners: list[NavigateListener] = []

    @property
    def locator(self) -> VerseLocator:
        return self._locators[self.mode]

    def locator_for(self, mode: str) -> VerseLocator:
        return self._locators[mode]

    @property
    def chapter(self) -> int:
        return self.translator.chapter

    @property
    def show_bismillah(self) -> bool:
        return self.translator.show_bismillah

    def on_sequence(self, listener: SequenceListener) -> None:
        self._sequence_listeners.append(listener)

    def on_navigate(self, listener: NavigateListener) -> None:
        self._navigate_listeners.append(listener)

    async def select_chapter(self, chapter_id: int) -> VerseSequence | None:
        return await self.select(VerseLocator("chapter", chapter_id))

    async def select_division(self, division_id: int) -> VerseSequence | None:
        return await self.select(VerseLocator("division", division_id))

    async def select_page(self, page_id: int) -> VerseSequence | None:
        return await self.select(VerseLocator("page", page_id))

    async def advance(self) -> VerseSequence | None:
        return await self._step(1)

    async def retreat(self) -> VerseSequence | None:
        return await self._step(-1)

    async def _step(self, delta: int) -> VerseSequence | None:
        current = self.locator
        target = current.step(delta)
        if target == current:
            _debug_log(f"{current.label()} is a boundary; ignoring step {delta:+d}")
            return None
        return await self.select(target)

    async def reload(self) -> VerseSequence | None:
        return await self.select(self.locator)

    async def set_recitation(self, recitation_id: int) -> VerseSequence | None:
        self.recitation_id = recitation_id
        return await self.reload()

    async def set_script(self, script: str) -> VerseSequence | None:
        script_field(script)
        self.script = script
        return await self.reload()

    async def select(self, locator: VerseLocator) -> VerseSequence | None:
        """
        Make ``locator`` current and fetch its verses.

        Returns the installed sequence, or None when a newer selection
        superseded this one before the fetch finished. Fetch failures leave
        the previous sequence in place and propagate as ContentFetchError;
        ``loading`` clears however the current fetch ends.
        """
        self._request_id += 1
        request_id = self._request_id
        self.mode = locator.mode
        self._locators[locator.mode] = locator
        self.loading = True
        for listener in list(self._navigate_listeners):
            listener(locator)

        loop = asyncio.get_running_loop()
        fetch = partial(
            self._client.fetch_verses,
            locator,
            recitation_id=self.recitation_id,
            script=self.script,
        )
        try:
            verses = await loop.run_in_executor(self._executor, fetch)
        except ContentFetchError:
            if request_id != self._request_id:
                _debug_log(f"Discarding failed fetch for superseded {locator.label()}")
                return None
            raise
        finally:
            if request_id == self._request_id:
                self.loading = False

        if request_id != self._request_id:
            _debug_log(f"Discarding stale fetch for {locator.label()}")
            return None
        return self._install(locator, verses)

    def _install(self, locator: VerseLocator, verses: Sequence[VerseRecord]) -> VerseSequence:
        sequence = VerseSequence(locator, tuple(verses))
        self.translator.anchor(sequence.verses)
        self._resync_counters(locator, sequence.first())
        self.sequence = sequence
        self.loading = False
        for listener in list(self._sequence_listeners):
            listener(sequence)
        return sequence

    def _resync_counters(self, installed: VerseLocator, first: VerseRecord | None) -> None:
        # Other modes follow the first verse only when the provider told us where it sits.
        if first is None:
            return
        observed = {
            "chapter": first.chapter,
            "division": first.division_number,
            "page": first.page_number,
        }
        for mode, value in observed.items():
            if mode == installed.mode or value is None:
                continue
            if 1 <= value <= MODE_LIMITS[mode]:
                self._locators[mode] = VerseLocator(mode, value)  # type: ignore[arg-type]

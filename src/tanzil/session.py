from __future__ import annotations

import asyncio
from concurrent.futures import Executor

from .content import (
    DEFAULT_RECITATION_ID,
    DEFAULT_SCRIPT,
    SCRIPT_FIELDS,
    ChapterInfo,
    ContentClient,
    VerseRecord,
    filter_chapters,
)
from .navigation import NavigationController, VerseSequence
from .playback import AudioEngine, PlaybackSequencer
from .position import LastReadPosition, ReadingPositionTracker
from .store import BookmarkStore

RECITATION_SETTING = "reciter_id"
SCRIPT_SETTING = "script"


def preferences_from_settings(settings: dict[str, str]) -> tuple[int, str]:
    recitation_id = DEFAULT_RECITATION_ID
    raw_recitation = settings.get(RECITATION_SETTING)
    if raw_recitation is not None:
        try:
            parsed = int(raw_recitation)
        except ValueError:
            parsed = 0
        if parsed > 0:
            recitation_id = parsed
    script = settings.get(SCRIPT_SETTING, DEFAULT_SCRIPT)
    if script not in SCRIPT_FIELDS:
        script = DEFAULT_SCRIPT
    return recitation_id, script


class ReaderSession:
    """
    One interactive reading session: navigation feeds the player's catalogue,
    and any navigation stops whatever is playing.
    """

    def __init__(
        self,
        client: ContentClient,
        engine: AudioEngine,
        *,
        tracker: ReadingPositionTracker | None = None,
        store: BookmarkStore | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.tracker = tracker or ReadingPositionTracker()
        self._executor = executor
        recitation_id, script = preferences_from_settings(
            store.get_settings() if store is not None else {}
        )
        self.navigation = NavigationController(
            client,
            recitation_id=recitation_id,
            script=script,
            executor=executor,
        )
        self.playback = PlaybackSequencer(engine, tracker=self.tracker)
        self.navigation.on_navigate(lambda _locator: self.playback.stop())
        self.navigation.on_sequence(self.playback.load)
        self.chapters: list[ChapterInfo] = []

    @property
    def sequence(self) -> VerseSequence:
        return self.navigation.sequence

    @property
    def last_read(self) -> LastReadPosition | None:
        return self.tracker.last_read

    async def load_chapters(self) -> list[ChapterInfo]:
        loop = asyncio.get_running_loop()
        self.chapters = await loop.run_in_executor(self._executor, self.client.list_chapters)
        return self.chapters

    def search_chapters(self, query: str | None) -> list[ChapterInfo]:
        return filter_chapters(self.chapters, query)

    def current_chapter(self) -> ChapterInfo | None:
        anchor = self.navigation.chapter
        for chapter in self.chapters:
            if chapter.id == anchor:
                return chapter
        return None

    def jump_to_verse(self, verse_number: int) -> VerseRecord | None:
        """Locate a verse of the anchor chapter in the loaded sequence."""
        info = self.current_chapter()
        if info is not None and not 1 <= verse_number <= info.verse_count:
            raise ValueError(
                f"Chapter {info.id} has verses 1-{info.verse_count}, got {verse_number}"
            )
        if verse_number < 1:
            raise ValueError("verse_number must be positive.")
        return self.sequence.find(verse_number, self.navigation.chapter)

    async def resume(self) -> LastReadPosition | None:
        position = self.tracker.last_read
        if position is None:
            return None
        await self.navigation.select_chapter(position.chapter)
        return position

    async def set_recitation(self, recitation_id: int) -> VerseSequence | None:
        if recitation_id < 1:
            raise ValueError("Recitation id must be positive.")
        if self.store is not None:
            self.store.set_setting(RECITATION_SETTING, str(recitation_id))
        return await self.navigation.set_recitation(recitation_id)

    async def set_script(self, script: str) -> VerseSequence | None:
        if script not in SCRIPT_FIELDS:
            raise ValueError(f"Unknown script {script!r}")
        if self.store is not None:
            self.store.set_setting(SCRIPT_SETTING, script)
        return await self.navigation.set_script(script)

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path

from .locator import CHAPTER_COUNT
from .paths import default_last_read_path
from .store import PersistenceError

LAST_READ_KEY = "lastRead"
POSITION_STATE_VERSION = 1


@dataclass(frozen=True, slots=True)
class LastReadPosition:
    chapter: int
    verse_number: int

    def to_payload(self) -> dict[str, object]:
        return {"chapter": self.chapter, "verse_number": self.verse_number}


class ReadingPositionTracker:
    """
    Single-slot record of the verse most recently started, kept outside the
    bookmark database so it survives without a server.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_last_read_path()
        self._last: LastReadPosition | None = self._load()

    def _load(self) -> LastReadPosition | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        if not isinstance(raw, dict):
            return None
        entry = raw.get(LAST_READ_KEY)
        if not isinstance(entry, dict):
            return None
        chapter = entry.get("chapter")
        verse_number = entry.get("verse_number")
        if not isinstance(chapter, int) or not isinstance(verse_number, int):
            return None
        if isinstance(chapter, bool) or isinstance(verse_number, bool):
            return None
        if not 1 <= chapter <= CHAPTER_COUNT or verse_number < 1:
            return None
        return LastReadPosition(chapter=chapter, verse_number=verse_number)

    @property
    def last_read(self) -> LastReadPosition | None:
        """The position to offer for resuming, if one was ever recorded."""
        return self._last

    def record(self, chapter: int, verse_number: int) -> LastReadPosition:
        position = LastReadPosition(chapter=chapter, verse_number=verse_number)
        state = {
            "version": POSITION_STATE_VERSION,
            LAST_READ_KEY: {**position.to_payload(), "updated_at": time.time()},
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(state, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            raise PersistenceError(f"Failed to save last-read position: {exc}") from exc
        self._last = position
        return position

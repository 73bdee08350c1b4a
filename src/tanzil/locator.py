from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Sequence

if TYPE_CHECKING:
    from .content import VerseRecord

NavigationMode = Literal["chapter", "division", "page"]

CHAPTER_COUNT = 114
DIVISION_COUNT = 30
PAGE_COUNT = 604

MODE_LIMITS: dict[str, int] = {
    "chapter": CHAPTER_COUNT,
    "division": DIVISION_COUNT,
    "page": PAGE_COUNT,
}

# Chapters whose text is not preceded by the opening formula.
_NO_BISMILLAH_CHAPTERS = frozenset({1, 9})


def mode_limit(mode: str) -> int:
    try:
        return MODE_LIMITS[mode]
    except KeyError:
        raise ValueError(f"Unknown navigation mode: {mode!r}") from None


@dataclass(frozen=True, slots=True)
class VerseLocator:
    """A (mode, id) pair; construction rejects ids outside the mode's range."""

    mode: NavigationMode
    id: int

    def __post_init__(self) -> None:
        limit = mode_limit(self.mode)
        if isinstance(self.id, bool) or not isinstance(self.id, int):
            raise ValueError(f"{self.mode} id must be an integer, got {self.id!r}")
        if not 1 <= self.id <= limit:
            raise ValueError(f"{self.mode} id must be within 1-{limit}, got {self.id}")

    @property
    def limit(self) -> int:
        return MODE_LIMITS[self.mode]

    def step(self, delta: int) -> VerseLocator:
        """Return the neighbouring locator, clamped to the mode's range."""
        target = min(max(self.id + delta, 1), self.limit)
        if target == self.id:
            return self
        return VerseLocator(self.mode, target)

    def label(self) -> str:
        return f"{self.mode} {self.id}"


def clamp_locator(mode: str, value: int) -> VerseLocator:
    limit = mode_limit(mode)
    return VerseLocator(mode, min(max(int(value), 1), limit))  # type: ignore[arg-type]


def shows_bismillah(chapter: int) -> bool:
    return chapter not in _NO_BISMILLAH_CHAPTERS


class LocatorTranslator:
    """
    Keeps the chapter anchor in step with whatever sequence was fetched last.

    Division and page numbers cannot be derived from chapter and verse alone;
    they are only known when the provider includes them on the verse records.
    """

    def __init__(self, chapter: int = 1) -> None:
        self.chapter = chapter
        self.division: int | None = None
        self.page: int | None = None

    @staticmethod
    def derive_chapter_from_sequence(verses: Sequence[VerseRecord]) -> int | None:
        if not verses:
            return None
        return verses[0].chapter

    def anchor(self, verses: Sequence[VerseRecord]) -> int:
        """Move the anchor to the first verse; an empty sequence leaves it unchanged."""
        if not verses:
            return self.chapter
        first = verses[0]
        self.chapter = first.chapter
        if first.division_number is not None:
            self.division = first.division_number
        if first.page_number is not None:
            self.page = first.page_number
        return self.chapter

    @property
    def show_bismillah(self) -> bool:
        return shows_bismillah(self.chapter)

from .content import ChapterInfo, ContentClient, ContentFetchError, VerseRecord
from .locator import LocatorTranslator, VerseLocator
from .navigation import NavigationController, VerseSequence
from .playback import (
    AudioUnavailableError,
    PlaybackSequencer,
    PlaybackState,
)
from .position import LastReadPosition, ReadingPositionTracker
from .session import ReaderSession
from .store import Bookmark, BookmarkStore, PersistenceError

__all__ = [
    "ChapterInfo",
    "VerseRecord",
    "ContentClient",
    "ContentFetchError",
    "VerseLocator",
    "LocatorTranslator",
    "NavigationController",
    "VerseSequence",
    "PlaybackSequencer",
    "PlaybackState",
    "AudioUnavailableError",
    "LastReadPosition",
    "ReadingPositionTracker",
    "ReaderSession",
    "Bookmark",
    "BookmarkStore",
    "PersistenceError",
]

"""
Durable bookmarks and key/value settings backed by SQLite.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .locator import CHAPTER_COUNT

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bookmarks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chapter INTEGER NOT NULL,
    verse_number INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class PersistenceError(RuntimeError):
    """Raised when bookmark or setting storage cannot be read or written."""


@dataclass(frozen=True, slots=True)
class Bookmark:
    id: int
    chapter: int
    verse_number: int
    created_at: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "chapter": self.chapter,
            "verse_number": self.verse_number,
            "created_at": self.created_at.isoformat(),
        }


def _validate_position(chapter: int, verse_number: int) -> None:
    if isinstance(chapter, bool) or not isinstance(chapter, int):
        raise ValueError("chapter must be an integer.")
    if isinstance(verse_number, bool) or not isinstance(verse_number, int):
        raise ValueError("verse_number must be an integer.")
    if not 1 <= chapter <= CHAPTER_COUNT:
        raise ValueError(f"chapter must be within 1-{CHAPTER_COUNT}.")
    if verse_number < 1:
        raise ValueError("verse_number must be positive.")


class BookmarkStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open bookmark store at {path}: {exc}") from exc

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def list(self) -> list[Bookmark]:
        """Bookmarks newest first."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT id, chapter, verse_number, created_at FROM bookmarks "
                    "ORDER BY created_at DESC, id DESC"
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to list bookmarks: {exc}") from exc
        return [
            Bookmark(
                id=row["id"],
                chapter=row["chapter"],
                verse_number=row["verse_number"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def create(self, chapter: int, verse_number: int) -> int:
        _validate_position(chapter, verse_number)
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO bookmarks (chapter, verse_number, created_at) VALUES (?, ?, ?)",
                    (chapter, verse_number, created_at),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to create bookmark: {exc}") from exc
        return int(cursor.lastrowid)

    def delete(self, bookmark_id: int) -> bool:
        """Remove a bookmark; returns False when the id was unknown."""
        try:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM bookmarks WHERE id = ?", (bookmark_id,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to delete bookmark {bookmark_id}: {exc}") from exc
        return cursor.rowcount > 0

    def get_settings(self) -> dict[str, str]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT key, value FROM settings").fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read settings: {exc}") from exc
        return {row["key"]: row["value"] for row in rows}

    def set_setting(self, key: str, value: str) -> None:
        if not isinstance(key, str) or not key.strip():
            raise ValueError("Setting key must be a non-empty string.")
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, str(value)),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to write setting {key!r}: {exc}") from exc

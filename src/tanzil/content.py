from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import requests

from .locator import VerseLocator
from .logging_utils import _debug_log

DEFAULT_API_BASE = "https://api.quran.com/api/v4"
AUDIO_CDN_ORIGIN = "https://audio.qurancdn.com/"
DEFAULT_LANGUAGE = "en"
DEFAULT_PAGE_SIZE = 300

DEFAULT_RECITATION_ID = 7
RECITATIONS: dict[int, str] = {
    7: "Al-Afasy",
    1: "AbdulSamad",
    5: "Al-Husary",
    12: "Al-Minshawi",
}

DEFAULT_SCRIPT = "uthmani"
SCRIPT_FIELDS: dict[str, str] = {
    "uthmani": "text_uthmani",
    "indopak": "text_indopak",
}

_LOCATOR_PATHS = {
    "chapter": "by_chapter",
    "division": "by_juz",
    "page": "by_page",
}


class ContentFetchError(RuntimeError):
    """Raised when chapter or verse data cannot be retrieved or parsed."""


@dataclass(frozen=True, slots=True)
class ChapterInfo:
    id: int
    native_name: str
    complex_name: str
    simple_name: str
    verse_count: int
    revelation_place: str


@dataclass(frozen=True, slots=True)
class VerseRecord:
    global_key: str
    chapter: int
    verse_number: int
    primary_text: str
    alternate_text: str = ""
    audio_ref: str | None = None
    division_number: int | None = None
    page_number: int | None = None


def script_field(script: str) -> str:
    try:
        return SCRIPT_FIELDS[script]
    except KeyError:
        raise ValueError(
            f"Unknown script {script!r}; expected one of {', '.join(SCRIPT_FIELDS)}"
        ) from None


def resolve_audio_url(audio_ref: str | None, origin: str = AUDIO_CDN_ORIGIN) -> str | None:
    """Make a provider audio reference absolute; protocol-relative refs get https."""
    if audio_ref is None:
        return None
    ref = audio_ref.strip()
    if not ref:
        return None
    if ref.startswith(("http://", "https://")):
        return ref
    if ref.startswith("//"):
        return f"https:{ref}"
    return f"{origin.rstrip('/')}/{ref.lstrip('/')}"


def filter_chapters(chapters: Iterable[ChapterInfo], query: str | None) -> list[ChapterInfo]:
    needle = (query or "").strip().casefold()
    if not needle:
        return list(chapters)
    matches: list[ChapterInfo] = []
    for chapter in chapters:
        haystack = (
            str(chapter.id),
            chapter.simple_name.casefold(),
            chapter.complex_name.casefold(),
            chapter.native_name.casefold(),
        )
        if any(needle in value for value in haystack):
            matches.append(chapter)
    return matches


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def parse_chapter(payload: Mapping[str, object]) -> ChapterInfo:
    try:
        return ChapterInfo(
            id=int(payload["id"]),  # type: ignore[arg-type]
            native_name=str(payload.get("name_arabic") or ""),
            complex_name=str(payload.get("name_complex") or ""),
            simple_name=str(payload.get("name_simple") or ""),
            verse_count=int(payload.get("verses_count") or 0),  # type: ignore[arg-type]
            revelation_place=str(payload.get("revelation_place") or ""),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ContentFetchError(f"Malformed chapter entry: {payload!r}") from exc


def parse_verse(payload: Mapping[str, object], script: str = DEFAULT_SCRIPT) -> VerseRecord:
    field = script_field(script)
    key = payload.get("verse_key")
    if not isinstance(key, str) or ":" not in key:
        raise ContentFetchError(f"Verse entry without a verse_key: {payload!r}")
    chapter_part, _, verse_part = key.partition(":")
    try:
        chapter = int(chapter_part)
        verse_number = int(payload.get("verse_number") or verse_part)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ContentFetchError(f"Malformed verse_key: {key!r}") from exc

    primary = payload.get(field)
    alternate = ""
    translations = payload.get("translations")
    if isinstance(translations, list):
        for entry in translations:
            if isinstance(entry, dict) and isinstance(entry.get("text"), str):
                alternate = entry["text"]
                break
    if not alternate:
        for other_field in SCRIPT_FIELDS.values():
            if other_field != field and isinstance(payload.get(other_field), str):
                alternate = payload[other_field]  # type: ignore[assignment]
                break

    audio_ref = None
    audio = payload.get("audio")
    if isinstance(audio, dict) and isinstance(audio.get("url"), str):
        audio_ref = audio["url"]

    return VerseRecord(
        global_key=f"{chapter}:{verse_number}",
        chapter=chapter,
        verse_number=verse_number,
        primary_text=primary if isinstance(primary, str) else "",
        alternate_text=alternate,
        audio_ref=audio_ref,
        division_number=_optional_int(payload.get("juz_number")),
        page_number=_optional_int(payload.get("page_number")),
    )


def sort_verses(verses: Sequence[VerseRecord]) -> list[VerseRecord]:
    return sorted(verses, key=lambda verse: (verse.chapter, verse.verse_number))


class ContentClient:
    """
    Thin wrapper around the remote content API.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        language: str = DEFAULT_LANGUAGE,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = 15.0,
        translation_ids: Sequence[int] = (),
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.page_size = page_size
        self.timeout = timeout
        self.translation_ids = tuple(translation_ids)
        self._session = session or requests.Session()

    def _get_json(self, path: str, params: Mapping[str, object]) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        _debug_log(f"GET {url} {dict(params)}")
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ContentFetchError(f"Failed to contact content API at {url}") from exc
        if resp.status_code != 200:
            raise ContentFetchError(
                f"{path} failed with status {resp.status_code}: {resp.text[:200]}"
            )
        try:
            payload = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ContentFetchError(f"Content API returned invalid JSON for {path}") from exc
        if not isinstance(payload, dict):
            raise ContentFetchError(f"Unexpected response body for {path}")
        return payload

    def list_chapters(self, language: str | None = None) -> list[ChapterInfo]:
        payload = self._get_json("chapters", {"language": language or self.language})
        entries = payload.get("chapters")
        if not isinstance(entries, list):
            raise ContentFetchError("Chapter list missing from response")
        chapters = [parse_chapter(entry) for entry in entries if isinstance(entry, dict)]
        chapters.sort(key=lambda chapter: chapter.id)
        return chapters

    def fetch_verses(
        self,
        locator: VerseLocator,
        *,
        recitation_id: int = DEFAULT_RECITATION_ID,
        script: str = DEFAULT_SCRIPT,
    ) -> list[VerseRecord]:
        """Fetch every verse for the locator, following provider pagination."""
        path = f"verses/{_LOCATOR_PATHS[locator.mode]}/{locator.id}"
        params: dict[str, object] = {
            "language": self.language,
            "words": "false",
            "audio": recitation_id,
            "fields": script_field(script),
            "per_page": self.page_size,
        }
        if self.translation_ids:
            params["translations"] = ",".join(str(tid) for tid in self.translation_ids)

        verses: list[VerseRecord] = []
        page = 1
        while True:
            params["page"] = page
            payload = self._get_json(path, params)
            entries = payload.get("verses")
            if not isinstance(entries, list):
                raise ContentFetchError(f"Verse list missing from {path} response")
            verses.extend(
                parse_verse(entry, script) for entry in entries if isinstance(entry, dict)
            )
            pagination = payload.get("pagination")
            next_page = pagination.get("next_page") if isinstance(pagination, dict) else None
            if not isinstance(next_page, int) or next_page <= page:
                break
            page = next_page
        return sort_verses(verses)

    def close(self) -> None:
        self._session.close()

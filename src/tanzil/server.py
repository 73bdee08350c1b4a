from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from .content import (
    DEFAULT_API_BASE,
    DEFAULT_LANGUAGE,
    ChapterInfo,
    ContentClient,
    ContentFetchError,
    filter_chapters,
)
from .store import BookmarkStore, PersistenceError


@dataclass(slots=True)
class ServerConfig:
    db_path: Path
    host: str = "0.0.0.0"
    port: int = 3000
    api_base: str = DEFAULT_API_BASE
    language: str = DEFAULT_LANGUAGE


def _required_int(payload: dict[str, object], *names: str) -> int:
    for name in names:
        value = payload.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise HTTPException(status_code=400, detail=f"{name} must be an integer.")
        return value
    raise HTTPException(status_code=400, detail=f"{names[0]} is required.")


def _chapter_payload(chapter: ChapterInfo) -> dict[str, object]:
    return {
        "id": chapter.id,
        "name_arabic": chapter.native_name,
        "name_complex": chapter.complex_name,
        "name_simple": chapter.simple_name,
        "verses_count": chapter.verse_count,
        "revelation_place": chapter.revelation_place,
    }


def create_app(
    config: ServerConfig,
    *,
    store: BookmarkStore | None = None,
    client: ContentClient | None = None,
) -> FastAPI:
    store = store or BookmarkStore(config.db_path.expanduser())
    client = client or ContentClient(config.api_base, language=config.language)

    app = FastAPI(title="tanzil")
    app.state.config = config
    app.state.store = store
    app.state.client = client
    app.add_event_handler("shutdown", client.close)

    store_lock = threading.Lock()
    chapters_lock = threading.Lock()
    chapter_cache: dict[str, list[ChapterInfo]] = {}

    @app.get("/api/bookmarks")
    def api_bookmarks() -> JSONResponse:
        try:
            bookmarks = store.list()
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse([bookmark.to_payload() for bookmark in bookmarks])

    @app.post("/api/bookmarks")
    def api_add_bookmark(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        chapter = _required_int(payload, "chapter", "sura_number")
        verse_number = _required_int(payload, "verse_number", "ayah_number")
        try:
            with store_lock:
                bookmark_id = store.create(chapter, verse_number)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse({"id": bookmark_id})

    @app.delete("/api/bookmarks/{bookmark_id}")
    def api_delete_bookmark(bookmark_id: int) -> JSONResponse:
        try:
            with store_lock:
                removed = store.delete(bookmark_id)
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if not removed:
            raise HTTPException(status_code=404, detail="Bookmark not found.")
        return JSONResponse({"status": "ok"})

    @app.get("/api/settings")
    def api_settings() -> JSONResponse:
        try:
            settings = store.get_settings()
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse(settings)

    @app.post("/api/settings")
    def api_update_setting(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        key = payload.get("key")
        if not isinstance(key, str) or not key.strip():
            raise HTTPException(status_code=400, detail="key is required.")
        value = payload.get("value")
        if value is None or isinstance(value, (dict, list)):
            raise HTTPException(status_code=400, detail="value must be a scalar.")
        try:
            with store_lock:
                store.set_setting(key, str(value))
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse({"status": "ok"})

    @app.get("/api/chapters")
    def api_chapters(
        language: str = Query(config.language),
        q: str | None = Query(None),
    ) -> JSONResponse:
        with chapters_lock:
            chapters = chapter_cache.get(language)
        if chapters is None:
            try:
                chapters = client.list_chapters(language)
            except ContentFetchError as exc:
                raise HTTPException(status_code=502, detail=str(exc)) from exc
            with chapters_lock:
                chapter_cache[language] = chapters
        return JSONResponse(
            {"chapters": [_chapter_payload(chapter) for chapter in filter_chapters(chapters, q)]}
        )

    return app

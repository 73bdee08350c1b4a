from __future__ import annotations

import argparse
import asyncio
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .content import (
    DEFAULT_API_BASE,
    DEFAULT_LANGUAGE,
    DEFAULT_RECITATION_ID,
    RECITATIONS,
    SCRIPT_FIELDS,
    ContentClient,
    ContentFetchError,
    filter_chapters,
)
from .locator import MODE_LIMITS, VerseLocator
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .paths import default_db_path
from .playback import AudioUnavailableError, PlaybackState
from .position import ReadingPositionTracker
from .server import ServerConfig, create_app
from .session import ReaderSession
from .store import BookmarkStore, PersistenceError

console = Console()


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("tanzil")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"tanzil {__version__}",
    )


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        help="Path to the bookmark/settings database (default: state dir or $TANZIL_DB).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (fetches, discarded results, playback events).",
    )


def _add_content_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--api-base",
        default=DEFAULT_API_BASE,
        help=f"Content API base URL (default: {DEFAULT_API_BASE}).",
    )
    parser.add_argument(
        "--language",
        default=DEFAULT_LANGUAGE,
        help=f"Language for chapter names and translations (default: {DEFAULT_LANGUAGE}).",
    )


def _add_locator_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=sorted(MODE_LIMITS),
        default="chapter",
        help="Addressing scheme for the target id (default: chapter).",
    )
    parser.add_argument("target", type=int, help="Chapter (1-114), division (1-30) or page (1-604).")
    parser.add_argument(
        "--script",
        choices=sorted(SCRIPT_FIELDS),
        help="Script for the verse text (default: saved setting or uthmani).",
    )
    parser.add_argument(
        "--reciter",
        type=int,
        help=(
            "Recitation id for verse audio (default: saved setting or "
            f"{DEFAULT_RECITATION_ID}). Known: "
            + ", ".join(f"{rid}={name}" for rid, name in RECITATIONS.items())
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="tanzil",
        description="Scripture reader: browse by chapter, division or page and play verse audio.",
    )
    _add_version_flag(ap)
    sub = ap.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the bookmarks/settings HTTP API.")
    _add_common_flags(serve)
    _add_content_flags(serve)
    serve.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host interface for the web server (default: 0.0.0.0).",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port for the web server (default: 3000).",
    )

    chapters = sub.add_parser("chapters", help="List chapters.")
    _add_common_flags(chapters)
    _add_content_flags(chapters)
    chapters.add_argument("-s", "--search", help="Filter chapters by name or number.")

    read = sub.add_parser("read", help="Print the verses for a chapter, division or page.")
    _add_common_flags(read)
    _add_content_flags(read)
    _add_locator_args(read)

    play = sub.add_parser("play", help="Play verse audio, advancing verse by verse.")
    _add_common_flags(play)
    _add_content_flags(play)
    _add_locator_args(play)
    play.add_argument("--verse", type=int, help="Verse number to start from (default: first).")
    play.add_argument(
        "--from-chapter",
        type=int,
        help="Chapter of the start verse when a division or page spans several chapters.",
    )
    play.add_argument(
        "--ffmpeg",
        default="ffmpeg",
        help="Path to ffmpeg executable (default: ffmpeg).",
    )

    resume = sub.add_parser("resume", help="Show (or play from) the last verse played.")
    _add_common_flags(resume)
    _add_content_flags(resume)
    resume.add_argument("--play", action="store_true", help="Start playback from the last verse.")
    resume.add_argument(
        "--ffmpeg",
        default="ffmpeg",
        help="Path to ffmpeg executable (default: ffmpeg).",
    )

    bookmarks = sub.add_parser("bookmarks", help="Manage bookmarks.")
    _add_common_flags(bookmarks)
    bookmark_sub = bookmarks.add_subparsers(dest="action")
    bookmark_sub.add_parser("list", help="List bookmarks, newest first.")
    add = bookmark_sub.add_parser("add", help="Bookmark a verse.")
    add.add_argument("chapter", type=int)
    add.add_argument("verse", type=int)
    remove = bookmark_sub.add_parser("remove", help="Delete a bookmark by id.")
    remove.add_argument("bookmark_id", type=int)

    settings = sub.add_parser("settings", help="Read or write settings.")
    _add_common_flags(settings)
    settings_sub = settings.add_subparsers(dest="action")
    settings_sub.add_parser("list", help="Show all settings.")
    set_cmd = settings_sub.add_parser("set", help="Create or replace a setting.")
    set_cmd.add_argument("key")
    set_cmd.add_argument("value")
    return ap


def _open_store(args: argparse.Namespace) -> BookmarkStore:
    db_path = Path(args.db).expanduser() if args.db else default_db_path()
    return BookmarkStore(db_path)


def _client(args: argparse.Namespace) -> ContentClient:
    return ContentClient(args.api_base, language=args.language)


def _run_serve(args: argparse.Namespace) -> int:
    db_path = Path(args.db).expanduser().resolve() if args.db else default_db_path()
    config = ServerConfig(
        db_path=db_path,
        host=args.host,
        port=args.port,
        api_base=args.api_base,
        language=args.language,
    )
    app = create_app(config)
    print(f"Bookmarks database: {db_path}")
    print(f"API URL: http://{args.host}:{args.port}/api/bookmarks")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=args.debug),
    )
    return 0


def _run_chapters(args: argparse.Namespace) -> int:
    client = _client(args)
    try:
        chapters = filter_chapters(client.list_chapters(), args.search)
    finally:
        client.close()
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Native")
    table.add_column("Verses", justify="right")
    table.add_column("Revealed")
    for chapter in chapters:
        table.add_row(
            str(chapter.id),
            chapter.simple_name,
            chapter.native_name,
            str(chapter.verse_count),
            chapter.revelation_place,
        )
    console.print(table)
    return 0


def _build_session(args: argparse.Namespace, engine, store: BookmarkStore) -> ReaderSession:
    session = ReaderSession(_client(args), engine, store=store)
    if getattr(args, "script", None):
        session.navigation.script = args.script
    if getattr(args, "reciter", None):
        session.navigation.recitation_id = args.reciter
    return session


async def _read_async(args: argparse.Namespace, store: BookmarkStore) -> int:
    session = _build_session(args, _SilentEngine(), store)
    try:
        sequence = await session.navigation.select(VerseLocator(args.mode, args.target))
    finally:
        session.client.close()
    if sequence is None:
        return 1
    first = sequence.first()
    if session.navigation.show_bismillah and first is not None and first.verse_number == 1:
        console.print("[dim]بِسْمِ ٱللَّهِ ٱلرَّحْمَٰنِ ٱلرَّحِيمِ[/dim]")
    for verse in sequence:
        console.print(f"[bold]{verse.global_key}[/bold] {verse.primary_text}")
        if verse.alternate_text:
            console.print(f"    [dim]{verse.alternate_text}[/dim]")
    return 0


class _SilentEngine:
    def open(self, url, on_finished, on_failed):
        raise AudioUnavailableError("Audio output is not available for this command.")


async def _play_async(
    args: argparse.Namespace,
    store: BookmarkStore,
    locator: VerseLocator,
    verse: int | None,
    chapter: int | None,
) -> int:
    from .audio import SimpleAudioEngine

    loop = asyncio.get_running_loop()
    engine = SimpleAudioEngine(dispatch=loop.call_soon_threadsafe, ffmpeg_path=args.ffmpeg)
    session = _build_session(args, engine, store)
    finished = asyncio.Event()
    failures: list[Exception] = []
    started = {"value": False}

    def _on_state(state: PlaybackState) -> None:
        if state.status == "playing":
            started["value"] = True
            console.print(f"[green]▶[/green] {state.active_key}")
        elif state.status == "idle" and started["value"]:
            finished.set()

    def _on_error(exc: Exception) -> None:
        failures.append(exc)
        finished.set()

    session.playback.on_state(_on_state)
    session.playback.on_error(_on_error)
    try:
        sequence = await session.navigation.select(locator)
        if sequence is None or sequence.first() is None:
            raise SystemExit(f"No verses found for {locator.label()}.")
        if verse is None:
            session.playback.toggle()
        else:
            session.playback.play(verse, chapter=chapter)
        await finished.wait()
    finally:
        session.playback.stop()
        session.client.close()
        engine.close()
    if failures:
        raise SystemExit(str(failures[0]))
    return 0


def _run_read(args: argparse.Namespace) -> int:
    store = _open_store(args)
    return asyncio.run(_read_async(args, store))


def _run_play(args: argparse.Namespace) -> int:
    store = _open_store(args)
    locator = VerseLocator(args.mode, args.target)
    chapter = args.from_chapter
    if chapter is None and args.mode == "chapter":
        chapter = args.target
    return asyncio.run(_play_async(args, store, locator, args.verse, chapter))


def _run_resume(args: argparse.Namespace) -> int:
    position = ReadingPositionTracker().last_read
    if position is None:
        print("Nothing played yet.")
        return 0
    print(f"Last read: chapter {position.chapter}, verse {position.verse_number}")
    if not args.play:
        return 0
    store = _open_store(args)
    locator = VerseLocator("chapter", position.chapter)
    return asyncio.run(
        _play_async(args, store, locator, position.verse_number, position.chapter)
    )


def _run_bookmarks(args: argparse.Namespace) -> int:
    store = _open_store(args)
    action = args.action or "list"
    if action == "add":
        bookmark_id = store.create(args.chapter, args.verse)
        print(f"Added bookmark {bookmark_id}: {args.chapter}:{args.verse}")
        return 0
    if action == "remove":
        if not store.delete(args.bookmark_id):
            raise SystemExit(f"Bookmark not found: {args.bookmark_id}")
        print(f"Removed bookmark {args.bookmark_id}")
        return 0
    table = Table(show_header=True, header_style="bold")
    table.add_column("id", justify="right")
    table.add_column("verse")
    table.add_column("created")
    for bookmark in store.list():
        table.add_row(
            str(bookmark.id),
            f"{bookmark.chapter}:{bookmark.verse_number}",
            bookmark.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    return 0


def _run_settings(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if args.action == "set":
        store.set_setting(args.key, args.value)
        print(f"{args.key} = {args.value}")
        return 0
    for key, value in sorted(store.get_settings().items()):
        print(f"{key} = {value}")
    return 0


_COMMANDS = {
    "serve": _run_serve,
    "chapters": _run_chapters,
    "read": _run_read,
    "play": _run_play,
    "resume": _run_resume,
    "bookmarks": _run_bookmarks,
    "settings": _run_settings,
}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    set_debug_logging(bool(getattr(args, "debug", False)))
    try:
        return _COMMANDS[args.command](args)
    except (ContentFetchError, AudioUnavailableError, PersistenceError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())

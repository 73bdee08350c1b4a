from __future__ import annotations

import subprocess
import threading
import time
from functools import partial
from typing import Callable

import requests

from .logging_utils import _debug_log
from .playback import AudioUnavailableError

try:
    import simpleaudio as _simpleaudio  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    _simpleaudio = None

SAMPLE_RATE = 44100
CHANNELS = 2
BYTES_PER_SAMPLE = 2
_FRAME_BYTES = CHANNELS * BYTES_PER_SAMPLE

Dispatcher = Callable[[Callable[[], None]], None]


def _call_now(callback: Callable[[], None]) -> None:
    callback()


def decode_to_pcm(data: bytes, *, ffmpeg_path: str = "ffmpeg") -> bytes:
    """
    Decode compressed audio bytes to interleaved 16-bit PCM using ffmpeg.
    """
    cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        "pipe:0",
        "-f",
        "s16le",
        "-acodec",
        "pcm_s16le",
        "-ac",
        str(CHANNELS),
        "-ar",
        str(SAMPLE_RATE),
        "pipe:1",
    ]
    try:
        result = subprocess.run(cmd, input=data, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise AudioUnavailableError(f"ffmpeg executable not found: {ffmpeg_path}") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode("utf-8", errors="ignore") if exc.stderr else ""
        raise AudioUnavailableError(f"ffmpeg failed to decode audio: {stderr.strip()}") from exc
    if not result.stdout:
        raise AudioUnavailableError("ffmpeg produced no audio samples")
    return result.stdout


class SimpleAudioEngine:
    """
    Streams verse audio to the local sound device.

    Audio is downloaded, decoded with ffmpeg and handed to simpleaudio on a
    loader thread, so ``start`` returns at once. Natural completion (from a
    watcher thread per play buffer) and loader failures are reported through
    ``dispatch`` (pass ``loop.call_soon_threadsafe`` to land them on an event loop).
    """

    def __init__(
        self,
        *,
        dispatch: Dispatcher | None = None,
        ffmpeg_path: str = "ffmpeg",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if _simpleaudio is None:
            raise AudioUnavailableError(
                "Local playback requires the `simpleaudio` package. "
                "Install it with `pip install simpleaudio`."
            )
        self.dispatch = dispatch or _call_now
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self._session = session or requests.Session()

    def open(
        self,
        url: str,
        on_finished: Callable[[], None],
        on_failed: Callable[[Exception], None],
    ) -> _SimpleAudioHandle:
        return _SimpleAudioHandle(self, url, on_finished, on_failed)

    def fetch(self, url: str) -> bytes:
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AudioUnavailableError(f"Failed to download audio from {url}") from exc
        if resp.status_code != 200:
            raise AudioUnavailableError(f"Audio download failed with status {resp.status_code}: {url}")
        return resp.content

    def close(self) -> None:
        self._session.close()


class _SimpleAudioHandle:
    def __init__(
        self,
        engine: SimpleAudioEngine,
        url: str,
        on_finished: Callable[[], None],
        on_failed: Callable[[Exception], None],
    ) -> None:
        self._engine = engine
        self.url = url
        self._on_finished = on_finished
        self._on_failed = on_failed
        self._lock = threading.Lock()
        self._pcm = b""
        self._offset = 0
        self._started_at = 0.0
        self._token = 0
        self._play_obj = None
        self._loader: threading.Thread | None = None
        self._paused = False
        self._released = False

    def start(self) -> None:
        with self._lock:
            if self._released or self._loader is not None:
                return
            token = self._token
            self._loader = threading.Thread(
                target=self._load,
                args=(token,),
                name="tanzil-audio-load",
                daemon=True,
            )
        self._loader.start()

    def _load(self, token: int) -> None:
        try:
            pcm = decode_to_pcm(self._engine.fetch(self.url), ffmpeg_path=self._engine.ffmpeg_path)
            with self._lock:
                if self._released or token != self._token:
                    return
                self._pcm = pcm
                self._offset = 0
                if self._paused:
                    return
            self._play_from_offset()
        except AudioUnavailableError as exc:
            with self._lock:
                if self._released:
                    _debug_log(f"Dropping failure for released {self.url}: {exc}")
                    return
            self._engine.dispatch(partial(self._on_failed, exc))

    def _play_from_offset(self) -> None:
        with self._lock:
            if self._released:
                return
            self._token += 1
            token = self._token
            remaining = self._pcm[self._offset:]
            try:
                play_obj = _simpleaudio.play_buffer(
                    remaining, CHANNELS, BYTES_PER_SAMPLE, SAMPLE_RATE
                )
            except Exception as exc:
                raise AudioUnavailableError(f"Audio output rejected {self.url}: {exc}") from exc
            self._play_obj = play_obj
            self._started_at = time.monotonic()
        watcher = threading.Thread(
            target=self._watch,
            args=(token, play_obj),
            name="tanzil-audio-watch",
            daemon=True,
        )
        watcher.start()

    def _watch(self, token: int, play_obj) -> None:
        play_obj.wait_done()
        with self._lock:
            if self._released or token != self._token:
                return
            self._token += 1
        _debug_log(f"Finished {self.url}")
        self._engine.dispatch(self._on_finished)

    def pause(self) -> None:
        with self._lock:
            if self._released:
                return
            self._paused = True
            if self._play_obj is None:
                return
            self._token += 1
            elapsed = time.monotonic() - self._started_at
            advanced = int(elapsed * SAMPLE_RATE) * _FRAME_BYTES
            self._offset = min(len(self._pcm), self._offset + advanced)
            play_obj, self._play_obj = self._play_obj, None
        play_obj.stop()

    def resume(self) -> None:
        with self._lock:
            if self._released or not self._paused:
                return
            self._paused = False
            # Still downloading; the loader starts playback once the audio is ready.
            if not self._pcm:
                return
        self._play_from_offset()

    def release(self) -> None:
        with self._lock:
            self._released = True
            self._token += 1
            play_obj, self._play_obj = self._play_obj, None
            self._pcm = b""
        if play_obj is not None:
            play_obj.stop()

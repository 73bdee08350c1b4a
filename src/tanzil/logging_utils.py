from __future__ import annotations

from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def _debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[tanzil debug] {message}", flush=True)


def _decoded_access_args(args: object) -> tuple[object, ...] | None:
    # uvicorn access records carry (client, method, path, http_version, status).
    if not isinstance(args, tuple) or len(args) != 5:
        return None
    path = args[2]
    if not isinstance(path, str) or "%" not in path:
        return None
    decoded = unquote(path, encoding="utf-8", errors="replace")
    return args[:2] + (decoded,) + args[3:]


class DecodedPathAccessFormatter(UvicornAccessFormatter):
    """
    Access log formatter that shows percent-encoded request paths as text,
    so Arabic chapter searches (``/api/chapters?q=...``) stay readable.
    """

    def formatMessage(self, record):  # type: ignore[override]
        decoded = _decoded_access_args(record.args)
        if decoded is None:
            return super().formatMessage(record)
        shown = copy(record)
        shown.args = decoded
        return super().formatMessage(shown)


def build_uvicorn_log_config(*, debug: bool = False) -> dict[str, Any]:
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = f"{__name__}.DecodedPathAccessFormatter"
    if debug:
        for logger in config.get("loggers", {}).values():
            if isinstance(logger, dict) and "level" in logger:
                logger["level"] = "DEBUG"
    return config

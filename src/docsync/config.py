"""SyncConfig — engine settings, optionally read from DOCSYNC_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

ENV_PREFIX = "DOCSYNC_"

_TRUTHY = ("true", "1", "yes", "on")
_FALSY = ("false", "0", "no", "off")


def _parse_bool(name: str, raw: str) -> bool:
    val = raw.strip().lower()
    if val in _TRUTHY:
        return True
    if val in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _parse_float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _parse_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ValueError(f"{name} must be at least 1")
    return value


@dataclass
class SyncConfig:
    """Settings for a SyncEngine talking to an HTTP snapshot endpoint.

    Environment variables:
        DOCSYNC_REMOTE_URL: URL of the ``/documents`` collection (required)
        DOCSYNC_DEBOUNCE: quiet period in seconds before a save (default 0.5)
        DOCSYNC_REQUEST_TIMEOUT: per-request timeout in seconds (default 10)
        DOCSYNC_JOURNAL_PATH: file for the local save journal (default: none)
        DOCSYNC_JOURNAL_MAX_ENTRIES: states kept in the journal (default 16)
        DOCSYNC_FLUSH_ON_CLOSE: save pending edits on shutdown (default true)
    """

    remote_url: str
    debounce: float = 0.5
    request_timeout: float | None = 10.0
    journal_path: Path | None = None
    journal_max_entries: int = 16
    flush_on_close: bool = True

    def __post_init__(self) -> None:
        if not self.remote_url:
            raise ValueError("remote_url is required")
        if self.debounce < 0:
            raise ValueError("debounce must not be negative")
        if self.journal_path is not None:
            self.journal_path = Path(self.journal_path)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SyncConfig:
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            raw = env.get(ENV_PREFIX + name, "")
            return raw if raw.strip() else None

        remote_url = get("REMOTE_URL")
        if remote_url is None:
            raise ValueError(f"{ENV_PREFIX}REMOTE_URL is not set")

        parsers: dict[str, Callable[[str, str], Any]] = {
            "debounce": _parse_float,
            "request_timeout": _parse_float,
            "journal_path": lambda _name, raw: Path(raw).expanduser(),
            "journal_max_entries": _parse_int,
            "flush_on_close": _parse_bool,
        }
        kwargs: dict[str, Any] = {"remote_url": remote_url.strip()}
        for field_name, parse in parsers.items():
            raw = get(field_name.upper())
            if raw is not None:
                kwargs[field_name] = parse(ENV_PREFIX + field_name.upper(), raw)
        return cls(**kwargs)

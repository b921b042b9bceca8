"""SaveJournal — local durability log for document states awaiting a remote save."""

from __future__ import annotations

import logging
import struct
import time
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Iterator

import msgpack

logger = logging.getLogger(__name__)

JOURNAL_VERSION = 1


@dataclass(frozen=True)
class JournalEntry:
    state: bytes
    recorded_at: float
    version: int = JOURNAL_VERSION

    def encode(self) -> bytes:
        return msgpack.packb(
            {"v": self.version, "ts": self.recorded_at, "s": self.state},
            use_bin_type=True,
        )

    @classmethod
    def decode(cls, data: bytes) -> JournalEntry:
        try:
            d = msgpack.unpackb(data, raw=False)
        except Exception as exc:
            raise ValueError("invalid journal entry encoding") from exc
        if not isinstance(d, dict) or not {"ts", "s"}.issubset(d.keys()):
            raise ValueError("journal entry missing required fields")
        if not isinstance(d["s"], (bytes, bytearray)):
            raise ValueError("journal entry state must be bytes")
        version = d.get("v", JOURNAL_VERSION)
        if not isinstance(version, int) or version < 1:
            raise ValueError("journal entry version must be a positive int")
        return cls(state=bytes(d["s"]), recorded_at=float(d["ts"]), version=version)


class SaveJournal:
    """Append-only log of full document states that have not reached the remote.

    Every save records its state before talking to the remote and compacts the
    log once the replace succeeds, so whatever is left after a crash or a failed
    replace can be merged back in and saved again.

    Wire format: [4-byte big-endian length][msgpack entry]
    """

    def __init__(self, path: str | Path | None = None, *, max_entries: int | None = 16) -> None:
        self._path = Path(path) if path else None
        self._lock = RLock()
        self._entries: list[bytes] = []
        self._max_entries = max_entries
        if self._path and self._path.exists():
            self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> None:
        assert self._path is not None
        data = self._path.read_bytes()
        offset = 0
        while offset < len(data):
            if offset + 4 > len(data):
                logger.warning("truncated length prefix at end of journal %s", self._path)
                break
            length = struct.unpack("!I", data[offset : offset + 4])[0]
            offset += 4
            if offset + length > len(data):
                logger.warning("truncated entry at end of journal %s", self._path)
                break
            self._entries.append(data[offset : offset + length])
            offset += length

    def record(self, state: bytes) -> None:
        entry = JournalEntry(state=state, recorded_at=time.time()).encode()
        with self._lock:
            self._entries.append(entry)
            trimmed = self._enforce_limits()
            if self._path is None:
                return
            # Older states are subsumed by newer full states, so dropping them is safe.
            if trimmed:
                self._rewrite_file()
            else:
                with self._path.open("ab") as f:
                    f.write(struct.pack("!I", len(entry)))
                    f.write(entry)

    def replay(self) -> Iterator[JournalEntry]:
        with self._lock:
            raw_entries = list(self._entries)
        for raw in raw_entries:
            try:
                yield JournalEntry.decode(raw)
            except ValueError:
                logger.warning("skipping malformed journal entry during replay")

    def compact(self) -> None:
        """Drop every entry after the remote has accepted a save."""
        with self._lock:
            self._entries.clear()
            self._rewrite_file()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _enforce_limits(self) -> bool:
        trimmed = False
        while self._max_entries is not None and len(self._entries) > self._max_entries:
            self._entries.pop(0)
            trimmed = True
        return trimmed

    def _rewrite_file(self) -> None:
        if self._path is None:
            return
        with self._path.open("wb") as f:
            for entry in self._entries:
                f.write(struct.pack("!I", len(entry)))
                f.write(entry)

"""CRDTStore — wraps LoroDoc as the single replicated state of a document."""

from __future__ import annotations

from threading import RLock
from typing import Any, Callable

from loro import ExportMode, LoroDoc, LoroList, LoroMap, VersionVector

from docsync.core.errors import InvalidUpdate


class CRDTStore:
    """Wraps a LoroDoc to provide a simplified CRDT state interface."""

    def __init__(self, peer_id: int | None = None) -> None:
        self._doc = LoroDoc()
        if peer_id is not None:
            self._doc.peer_id = peer_id
        self._lock = RLock()
        # Loro drops a subscription once its handle is garbage collected.
        self._subscriptions: list[Any] = []

    @property
    def doc(self) -> LoroDoc:
        return self._doc

    @property
    def peer_id(self) -> int:
        return self._doc.peer_id

    def clone_oplog_vv(self) -> VersionVector:
        """Return a copy of the current oplog version vector."""
        with self._lock:
            return VersionVector.decode(self._doc.oplog_vv.encode())

    def get_map(self, key: str) -> LoroMap:
        with self._lock:
            return self._doc.get_map(key)

    def get_list(self, key: str) -> LoroList:
        with self._lock:
            return self._doc.get_list(key)

    def commit(self) -> None:
        with self._lock:
            self._doc.commit()

    def export_snapshot(self) -> bytes:
        with self._lock:
            return self._doc.export(ExportMode.Snapshot())

    def export_updates(self, since: VersionVector | None = None) -> bytes:
        if since is None:
            since = VersionVector()
        with self._lock:
            return self._doc.export(ExportMode.Updates(since))

    def import_updates(self, data: bytes) -> None:
        """Merge an update or snapshot blob. Importing the same blob twice is a no-op."""
        with self._lock:
            try:
                self._doc.import_batch([data])
            except BaseException as exc:
                # loro reports undecodable payloads as a bare BaseException
                if not isinstance(exc, Exception) and type(exc) is not BaseException:
                    raise
                raise InvalidUpdate("CRDT import rejected the update payload") from exc

    def on_change(self, callback: Callable[[Any], None]) -> Any:
        """Subscribe to all changes (local commits and imports).

        Loro delivers the event synchronously from inside commit() or the
        import call that produced it.
        """
        with self._lock:
            subscription = self._doc.subscribe_root(callback)
            self._subscriptions.append(subscription)
            return subscription

    def get_deep_value(self) -> dict[str, Any]:
        with self._lock:
            return self._doc.get_deep_value()

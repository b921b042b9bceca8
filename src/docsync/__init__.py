"""docsync — local-first sync of a CRDT block document to a remote snapshot slot."""

from docsync._version import __version__
from docsync.api.lifecycle import LifecycleManager, SyncEvent
from docsync.config import SyncConfig
from docsync.core.document import BlockDocument
from docsync.core.errors import (
    DecodingError,
    EncodingError,
    InvalidUpdate,
    RemoteTimeout,
    RemoteUnavailable,
    SyncError,
)
from docsync.core.types import BlockFlavour, SnapshotRecord
from docsync.net.journal import SaveJournal
from docsync.net.remote import HttpRemoteStore, InMemoryRemoteStore, RemoteStore
from docsync.sync.engine import SyncEngine
from docsync.sync.guard import GuardState, SyncGuard

__all__ = [
    "__version__",
    "BlockDocument",
    "BlockFlavour",
    "DecodingError",
    "EncodingError",
    "GuardState",
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "InvalidUpdate",
    "LifecycleManager",
    "RemoteStore",
    "RemoteTimeout",
    "RemoteUnavailable",
    "SaveJournal",
    "SnapshotRecord",
    "SyncConfig",
    "SyncEngine",
    "SyncError",
    "SyncEvent",
    "SyncGuard",
]

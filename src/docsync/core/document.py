"""BlockDocument — block tree over CRDT state, the editor side of the sync core."""

from __future__ import annotations

import logging
from typing import Any

from docsync._util.ids import generate_block_id
from docsync.core.store import CRDTStore
from docsync.core.types import BlockID, ChangeCallback

logger = logging.getLogger(__name__)

META_KEY = "meta"
BLOCKS_KEY = "blocks"


def _unwrap(result: Any) -> Any:
    if hasattr(result, "is_value") and result.is_value:
        return result.value
    return result


def _props_key(block_id: BlockID) -> str:
    return f"props:{block_id}"


def _children_key(block_id: BlockID) -> str:
    return f"children:{block_id}"


class BlockDocument:
    """A tree of flavoured blocks stored in one Loro document.

    Layout of the underlying document:
        meta              map   root -> id of the top-level block
        blocks            map   block id -> {"flavour", "parent"}
        props:<id>        map   attributes of one block
        children:<id>     list  ordered child ids of one block
    """

    def __init__(self, store: CRDTStore | None = None, peer_id: int | None = None) -> None:
        self._store = store or CRDTStore(peer_id=peer_id)
        self._loaded = False

    @property
    def store(self) -> CRDTStore:
        return self._store

    @property
    def peer_id(self) -> int:
        return self._store.peer_id

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def mark_loaded(self) -> None:
        """Flag that remote content has been merged and is ready for display."""
        self._loaded = True

    # -- editor contract -------------------------------------------------

    def get_full_state(self) -> bytes:
        return self._store.export_snapshot()

    def apply_update(self, data: bytes) -> None:
        self._store.import_updates(data)

    def on_change(self, callback: ChangeCallback) -> Any:
        return self._store.on_change(callback)

    def add_structural_node(
        self,
        kind: str,
        attrs: dict[str, Any] | None = None,
        parent_id: BlockID | None = None,
        *,
        commit: bool = True,
    ) -> BlockID:
        """Create a block of flavour ``kind`` and append it to ``parent_id``.

        A block without a parent becomes the document root when none exists yet.
        """
        attrs = attrs or {}
        for key, value in attrs.items():
            if not self._is_supported_value(value):
                raise TypeError(
                    f"unsupported attribute type for block '{kind}.{key}': {type(value).__name__}"
                )
        if parent_id is not None and not self.has_block(parent_id):
            raise KeyError(parent_id)

        block_id = generate_block_id()
        self._store.get_map(BLOCKS_KEY).insert(block_id, {"flavour": kind, "parent": parent_id})
        props = self._store.get_map(_props_key(block_id))
        for key, value in attrs.items():
            props.insert(key, self._normalize_value(value))
        if parent_id is not None:
            children = self._store.get_list(_children_key(parent_id))
            children.insert(len(children.get_deep_value()), block_id)
        elif self.root_id is None:
            self._store.get_map(META_KEY).insert("root", block_id)

        if commit:
            self._store.commit()
        logger.debug("added %s block %s under %s", kind, block_id, parent_id)
        return block_id

    # -- local edits -----------------------------------------------------

    def set_attribute(self, block_id: BlockID, key: str, value: Any, *, commit: bool = True) -> None:
        if not self.has_block(block_id):
            raise KeyError(block_id)
        if not self._is_supported_value(value):
            raise TypeError(
                f"unsupported attribute type for block '{block_id}.{key}': {type(value).__name__}"
            )
        self._store.get_map(_props_key(block_id)).insert(key, self._normalize_value(value))
        if commit:
            self._store.commit()

    def commit(self) -> None:
        self._store.commit()

    # -- reads -----------------------------------------------------------

    @property
    def root_id(self) -> BlockID | None:
        return _unwrap(self._store.get_map(META_KEY).get("root"))

    def has_block(self, block_id: BlockID) -> bool:
        return block_id in self._store.get_map(BLOCKS_KEY)

    def flavour(self, block_id: BlockID) -> str:
        entry = _unwrap(self._store.get_map(BLOCKS_KEY).get(block_id))
        if entry is None:
            raise KeyError(block_id)
        return entry["flavour"]

    def attributes(self, block_id: BlockID) -> dict[str, Any]:
        if not self.has_block(block_id):
            raise KeyError(block_id)
        return self._store.get_map(_props_key(block_id)).get_deep_value()

    def children(self, block_id: BlockID) -> list[BlockID]:
        return list(self._store.get_list(_children_key(block_id)).get_deep_value())

    def block_count(self) -> int:
        return len(self._store.get_map(BLOCKS_KEY))

    def outline(self) -> dict[str, Any] | None:
        """Nested view of the block tree starting at the root, for display."""
        root = self.root_id
        if root is None:
            return None
        return self._outline(root)

    def _outline(self, block_id: BlockID) -> dict[str, Any]:
        return {
            "id": block_id,
            "flavour": self.flavour(block_id),
            "props": self.attributes(block_id),
            "children": [self._outline(child) for child in self.children(block_id)],
        }

    def get_deep_value(self) -> dict[str, Any]:
        return self._store.get_deep_value()

    @classmethod
    def _is_supported_value(cls, value: Any) -> bool:
        if value is None or isinstance(value, (bool, int, float, str, bytes)):
            return True
        if isinstance(value, (list, tuple)):
            return all(cls._is_supported_value(v) for v in value)
        if isinstance(value, dict):
            return all(isinstance(k, str) and cls._is_supported_value(v) for k, v in value.items())
        return False

    @classmethod
    def _normalize_value(cls, value: Any) -> Any:
        if isinstance(value, tuple):
            return [cls._normalize_value(v) for v in value]
        if isinstance(value, list):
            return [cls._normalize_value(v) for v in value]
        if isinstance(value, dict):
            return {k: cls._normalize_value(v) for k, v in value.items()}
        return value

"""Type definitions for the docsync core module."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)


BlockID = str
ChangeCallback = Callable[[Any], None]


class BlockFlavour(str, Enum):
    PAGE = "page"
    SURFACE = "surface"
    NOTE = "note"
    PARAGRAPH = "paragraph"


@dataclass(frozen=True)
class SnapshotRecord:
    """One persisted snapshot in the remote slot."""

    id: str
    state: str

    def to_json(self) -> dict[str, str]:
        return {"id": self.id, "state": self.state}

    @classmethod
    def from_json(cls, data: Any) -> SnapshotRecord:
        if not isinstance(data, dict):
            raise ValueError("snapshot record must be an object")
        record_id = data.get("id")
        state = data.get("state")
        # mockapi-style stores hand out string ids, others use integers
        if isinstance(record_id, bool) or not isinstance(record_id, (str, int)):
            raise ValueError("snapshot record id must be a string or int")
        if not isinstance(state, str):
            raise ValueError("snapshot record state must be a string")
        return cls(id=str(record_id), state=state)


def select_live_record(records: Sequence[SnapshotRecord]) -> SnapshotRecord | None:
    """Pick the record that represents the document slot.

    The slot holds one record once a replace has settled. More than one record
    means an earlier replace failed between its deletes and its create; the
    first record in listing order wins. That is a tie-break, not a guarantee
    that the newest state is chosen.
    """
    if not records:
        return None
    if len(records) > 1:
        logger.warning(
            "remote slot holds %d snapshot records; using the first (id=%s)",
            len(records),
            records[0].id,
        )
    return records[0]

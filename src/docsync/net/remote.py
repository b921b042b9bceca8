"""RemoteStore ABC, InMemoryRemoteStore, and the aiohttp-backed HttpRemoteStore."""

from __future__ import annotations

import abc
import logging
from typing import Any

import aiohttp
import anyio

from docsync.core.errors import RemoteTimeout, RemoteUnavailable
from docsync.core.types import SnapshotRecord

logger = logging.getLogger(__name__)


class RemoteStore(abc.ABC):
    """A remote slot holding serialized document snapshots."""

    @abc.abstractmethod
    async def list_snapshots(self) -> list[SnapshotRecord]: ...

    @abc.abstractmethod
    async def create_snapshot(self, state: str) -> SnapshotRecord: ...

    @abc.abstractmethod
    async def delete_snapshot(self, record_id: str) -> None: ...

    async def close(self) -> None:
        return None

    async def replace_all(self, state: str) -> SnapshotRecord:
        """Delete every existing record, then create one holding ``state``.

        Not atomic. If this raises, the slot may be untouched, empty, or
        partially cleared; treat the persisted state as unknown.
        """
        deleted = await self.clear()
        record = await self.create_snapshot(state)
        logger.debug("replaced %d remote snapshot(s) with %s", deleted, record.id)
        return record

    async def clear(self) -> int:
        """Delete every record in the slot and return how many were removed."""
        records = await self.list_snapshots()
        for record in records:
            await self.delete_snapshot(record.id)
        return len(records)

    async def __aenter__(self) -> RemoteStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class InMemoryRemoteStore(RemoteStore):
    """Process-local store with the same semantics as the HTTP endpoint."""

    def __init__(self, records: list[SnapshotRecord] | None = None) -> None:
        self._records: list[SnapshotRecord] = list(records or [])
        self._next_id = 1 + max((int(r.id) for r in self._records if r.id.isdigit()), default=0)

    @property
    def records(self) -> list[SnapshotRecord]:
        return list(self._records)

    async def list_snapshots(self) -> list[SnapshotRecord]:
        await anyio.sleep(0)
        return list(self._records)

    async def create_snapshot(self, state: str) -> SnapshotRecord:
        await anyio.sleep(0)
        record = SnapshotRecord(id=str(self._next_id), state=state)
        self._next_id += 1
        self._records.append(record)
        return record

    async def delete_snapshot(self, record_id: str) -> None:
        await anyio.sleep(0)
        self._records = [r for r in self._records if r.id != record_id]


class HttpRemoteStore(RemoteStore):
    """REST client for a ``/documents`` collection of ``{id, state}`` objects.

    GET lists records, POST creates one, DELETE /<id> removes one. A 404 on
    delete counts as success since the record is gone either way.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Content-Type": "application/json"})
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        ok_statuses: tuple[int, ...] = (200, 201, 204),
    ) -> Any:
        session = self._get_session()
        try:
            with anyio.fail_after(self._timeout):
                async with session.request(method, url, json=json_body) as resp:
                    if resp.status not in ok_statuses:
                        body = await resp.text()
                        raise RemoteUnavailable(
                            f"{method} {url} failed with status {resp.status}: {body[:100]}",
                            status=resp.status,
                        )
                    if resp.status == 204 or method == "DELETE":
                        return None
                    return await resp.json(content_type=None)
        except TimeoutError as exc:
            raise RemoteTimeout(f"{method} {url} timed out after {self._timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise RemoteUnavailable(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise RemoteUnavailable(f"{method} {url} returned a non-JSON body") from exc

    async def list_snapshots(self) -> list[SnapshotRecord]:
        payload = await self._request("GET", self._base_url, ok_statuses=(200,))
        if not isinstance(payload, list):
            raise RemoteUnavailable("snapshot listing is not a JSON array")
        try:
            return [SnapshotRecord.from_json(item) for item in payload]
        except ValueError as exc:
            raise RemoteUnavailable("snapshot listing contains a malformed record") from exc

    async def create_snapshot(self, state: str) -> SnapshotRecord:
        payload = await self._request("POST", self._base_url, json_body={"state": state}, ok_statuses=(200, 201))
        try:
            return SnapshotRecord.from_json(payload)
        except ValueError as exc:
            raise RemoteUnavailable("create returned a malformed record") from exc

    async def delete_snapshot(self, record_id: str) -> None:
        await self._request(
            "DELETE",
            f"{self._base_url}/{record_id}",
            ok_statuses=(200, 202, 204, 404),
        )

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

"""SyncEngine — keeps a BlockDocument and its remote snapshot slot in step."""

from __future__ import annotations

import logging
from typing import Any

import anyio
import anyio.abc

from docsync.api.lifecycle import LifecycleHook, LifecycleManager, SyncEvent
from docsync.config import SyncConfig
from docsync.core import codec
from docsync.core.document import BlockDocument
from docsync.core.errors import DecodingError, EncodingError, RemoteUnavailable
from docsync.core.types import BlockFlavour, select_live_record
from docsync.net.journal import SaveJournal
from docsync.net.remote import HttpRemoteStore, RemoteStore
from docsync.sync.guard import SyncGuard

logger = logging.getLogger(__name__)


class SyncEngine:
    """Owns one BlockDocument and persists it to a single remote slot.

    Local edits are debounced into one full-state save; remote state is merged
    in under the guard so the merge never echoes back as a save. Remote
    failures are logged, reported through ``SyncEvent.ON_ERROR`` and
    swallowed; the next local edit is the retry.

    Debounced saves need a running task group, so use the engine as an async
    context manager:

        async with SyncEngine(HttpRemoteStore(url)) as engine:
            await engine.load()
    """

    def __init__(
        self,
        remote: RemoteStore,
        document: BlockDocument | None = None,
        *,
        debounce: float = 0.5,
        journal: SaveJournal | None = None,
        flush_on_close: bool = True,
    ) -> None:
        self._remote = remote
        self._owns_remote = False
        self._document = document or BlockDocument()
        self._guard = SyncGuard()
        self._debounce = debounce
        self._journal = journal
        self._flush_on_close = flush_on_close
        self._lifecycle = LifecycleManager()
        self._remote_lock = anyio.Lock()
        self._task_group: anyio.abc.TaskGroup | None = None
        self._document.on_change(self._on_document_change)

    @classmethod
    def from_config(cls, config: SyncConfig, document: BlockDocument | None = None) -> SyncEngine:
        journal = None
        if config.journal_path is not None:
            journal = SaveJournal(config.journal_path, max_entries=config.journal_max_entries)
        engine = cls(
            HttpRemoteStore(config.remote_url, timeout=config.request_timeout),
            document,
            debounce=config.debounce,
            journal=journal,
            flush_on_close=config.flush_on_close,
        )
        engine._owns_remote = True
        return engine

    @property
    def document(self) -> BlockDocument:
        return self._document

    @property
    def remote(self) -> RemoteStore:
        return self._remote

    @property
    def guard(self) -> SyncGuard:
        return self._guard

    @property
    def journal(self) -> SaveJournal | None:
        return self._journal

    @property
    def lifecycle(self) -> LifecycleManager:
        return self._lifecycle

    @property
    def is_running(self) -> bool:
        return self._task_group is not None

    def on(self, event: SyncEvent, hook: LifecycleHook) -> None:
        self._lifecycle.on(event, hook)

    async def __aenter__(self) -> SyncEngine:
        if self._task_group is not None:
            raise RuntimeError("sync engine is already running")
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        self._guard.bind_task_group(self._task_group)
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        task_group = self._task_group
        if task_group is None:
            return
        try:
            if self._flush_on_close and exc_type is None:
                await self._guard.flush()
            else:
                self._guard.cancel_pending()
        finally:
            self._guard.bind_task_group(None)
            self._task_group = None
            await task_group.__aexit__(exc_type, exc, tb)
            if self._owns_remote:
                await self._remote.close()

    def _on_document_change(self, _event: Any) -> None:
        if self._guard.is_applying_remote:
            return
        if self._task_group is None:
            logger.warning("document changed while the sync engine is stopped; not scheduling a save")
            return
        self._guard.schedule_save(self.save, self._debounce)

    async def _report_error(self, operation: str, exc: Exception) -> None:
        await self._lifecycle.fire_async(SyncEvent.ON_ERROR, self, operation, exc)

    async def save(self) -> bool:
        """Replace the remote snapshot with the document's full current state."""
        if self._guard.is_applying_remote:
            return False
        async with self._remote_lock:
            await self._lifecycle.fire_async(SyncEvent.BEFORE_SAVE, self)
            state = self._document.get_full_state()
            if self._journal is not None:
                try:
                    self._journal.record(state)
                except OSError:
                    logger.exception("failed to record document state in save journal")
            try:
                encoded = codec.encode(state)
                record = await self._remote.replace_all(encoded)
            except (RemoteUnavailable, EncodingError) as exc:
                logger.error("error saving document: %s", exc)
                await self._report_error("save", exc)
                return False
            if self._journal is not None:
                try:
                    self._journal.compact()
                except OSError:
                    logger.exception("failed to compact save journal")
            logger.info("document saved to remote as record %s (%d bytes)", record.id, len(state))
            await self._lifecycle.fire_async(SyncEvent.AFTER_SAVE, self, record)
            return True

    async def load(self) -> bool:
        """Merge the remote snapshot into the local document."""
        async with self._remote_lock:
            await self._lifecycle.fire_async(SyncEvent.BEFORE_LOAD, self)
            try:
                records = await self._remote.list_snapshots()
            except RemoteUnavailable as exc:
                logger.error("error loading document: %s", exc)
                await self._report_error("load", exc)
                return False

            record = select_live_record(records)
            if record is None:
                logger.warning("no document found in remote store")
                return False

            try:
                update = codec.decode(record.state)
                # pending local ops must notify outside the remote-apply scope
                self._document.commit()
                with self._guard.applying_remote():
                    self._document.apply_update(update)
            except DecodingError as exc:
                logger.exception("remote snapshot %s could not be merged", record.id)
                await self._report_error("load", exc)
                return False

            self._document.mark_loaded()
            logger.info("document loaded from remote record %s", record.id)
            await self._lifecycle.fire_async(SyncEvent.AFTER_LOAD, self, record)
            return True

    async def create_initial(self, title: str = "Test", text: str = "Hello World!") -> bool:
        """Give an empty document its page skeleton and save it once."""
        doc = self._document
        if doc.root_id is not None:
            raise RuntimeError("document already has a root block")
        page_id = doc.add_structural_node(BlockFlavour.PAGE.value, {"title": title}, commit=False)
        surface_id = doc.add_structural_node(BlockFlavour.SURFACE.value, {}, page_id, commit=False)
        note_id = doc.add_structural_node(BlockFlavour.NOTE.value, {}, surface_id, commit=False)
        doc.add_structural_node(BlockFlavour.PARAGRAPH.value, {"text": text}, note_id, commit=False)
        doc.commit()
        # The explicit save below covers the debounce the commit just queued.
        self._guard.cancel_pending()
        return await self.save()

    async def clear_remote(self) -> bool:
        """Delete every remote record; the local document is left alone."""
        async with self._remote_lock:
            try:
                deleted = await self._remote.clear()
            except RemoteUnavailable as exc:
                logger.error("error deleting documents: %s", exc)
                await self._report_error("clear", exc)
                return False
            logger.info("deleted %d document(s) from remote store", deleted)
            await self._lifecycle.fire_async(SyncEvent.AFTER_CLEAR, self, deleted)
            return True

    async def recover(self) -> bool:
        """Merge states left in the journal by failed saves, then save again."""
        if self._journal is None or len(self._journal) == 0:
            return False
        recovered = 0
        with self._guard.applying_remote():
            for entry in self._journal.replay():
                try:
                    self._document.apply_update(entry.state)
                except DecodingError:
                    logger.warning("skipping journal entry recorded at %s", entry.recorded_at)
                    continue
                recovered += 1
        if recovered == 0:
            return False
        logger.info("recovered %d unsaved state(s) from the save journal", recovered)
        return await self.save()

    async def flush(self) -> bool:
        """Run a pending debounced save right away."""
        return await self._guard.flush()

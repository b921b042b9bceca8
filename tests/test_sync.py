"""Tests for sync module: guard, engine, end-to-end save/load flows."""

import tempfile
from pathlib import Path

import anyio
import pytest

from docsync.api.lifecycle import SyncEvent
from docsync.config import SyncConfig
from docsync.core import codec
from docsync.core.document import BlockDocument
from docsync.core.errors import DecodingError, InvalidUpdate, RemoteUnavailable
from docsync.core.types import SnapshotRecord
from docsync.net.journal import SaveJournal
from docsync.net.remote import InMemoryRemoteStore
from docsync.sync.engine import SyncEngine
from docsync.sync.guard import GuardState, SyncGuard

from documents_server import make_documents_app, serve

# asyncio may wake a timer up to one clock tick early
TIMER_SLACK = 0.01


class RecordingStore(InMemoryRemoteStore):
    """In-memory store that timestamps every replace and can fail on demand."""

    def __init__(self, records=None):
        super().__init__(records)
        self.replace_calls = []
        self.fail_creates = 0
        self.fail_lists = 0

    async def replace_all(self, state):
        self.replace_calls.append((anyio.current_time(), state))
        return await super().replace_all(state)

    async def create_snapshot(self, state):
        if self.fail_creates:
            self.fail_creates -= 1
            raise RemoteUnavailable("create refused", status=503)
        return await super().create_snapshot(state)

    async def list_snapshots(self):
        if self.fail_lists:
            self.fail_lists -= 1
            raise RemoteUnavailable("list refused", status=503)
        return await super().list_snapshots()


def _page_document(peer_id=1, title="Remote page"):
    doc = BlockDocument(peer_id=peer_id)
    page = doc.add_structural_node("page", {"title": title})
    note = doc.add_structural_node("note", {}, page)
    doc.add_structural_node("paragraph", {"text": "from the remote"}, note)
    return doc, page


def _decode_document(state):
    doc = BlockDocument()
    doc.apply_update(codec.decode(state))
    return doc


async def _wait_for(predicate, timeout=2.0):
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


class TestSyncGuard:
    def test_applying_remote_scope(self):
        guard = SyncGuard()
        assert not guard.is_applying_remote
        with guard.applying_remote():
            assert guard.is_applying_remote
            with guard.applying_remote():
                assert guard.is_applying_remote
            assert guard.is_applying_remote
        assert not guard.is_applying_remote

    def test_flag_cleared_when_apply_raises(self):
        guard = SyncGuard()
        with pytest.raises(ValueError):
            with guard.applying_remote():
                raise ValueError("bad update")
        assert not guard.is_applying_remote

    def test_unbalanced_end_raises(self):
        guard = SyncGuard()
        with pytest.raises(RuntimeError):
            guard.end_remote_apply()

    def test_schedule_requires_task_group(self):
        guard = SyncGuard()

        async def callback():
            pass

        with pytest.raises(RuntimeError):
            guard.schedule_save(callback, 0.1)

    @pytest.mark.anyio
    async def test_burst_coalesces_to_one_call(self):
        fired = []

        async def callback():
            fired.append(anyio.current_time())

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)
            for _ in range(5):
                guard.schedule_save(callback, 0.05)
                last = anyio.current_time()
                await anyio.sleep(0.01)
            assert guard.state is GuardState.PENDING
            await anyio.sleep(0.2)

        assert len(fired) == 1
        assert fired[0] - last >= 0.05 - TIMER_SLACK
        assert guard.state is GuardState.IDLE

    @pytest.mark.anyio
    async def test_at_most_one_pending_call(self):
        async def callback():
            pass

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)
            first = guard.schedule_save(callback, 0.05)
            second = guard.schedule_save(callback, 0.05)
            assert first.cancelled
            assert guard.pending is second
            guard.cancel_pending()

    @pytest.mark.anyio
    async def test_cancel_pending(self):
        fired = []

        async def callback():
            fired.append(True)

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)
            guard.schedule_save(callback, 0.05)
            assert guard.cancel_pending()
            assert not guard.cancel_pending()
            await anyio.sleep(0.1)

        assert fired == []

    @pytest.mark.anyio
    async def test_flush_runs_pending_call_now(self):
        fired = []

        async def callback():
            fired.append(True)

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)
            guard.schedule_save(callback, 10)
            assert await guard.flush()
            assert fired == [True]
            assert not await guard.flush()

    @pytest.mark.anyio
    async def test_state_is_saving_while_callback_runs(self):
        seen = []

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)

            async def callback():
                seen.append(guard.state)

            guard.schedule_save(callback, 0.01)
            await anyio.sleep(0.1)

        assert seen == [GuardState.SAVING]

    @pytest.mark.anyio
    async def test_fired_call_cannot_be_cancelled(self):
        release = anyio.Event()
        finished = []

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)

            async def slow_callback():
                await release.wait()
                finished.append(True)

            call = guard.schedule_save(slow_callback, 0.01)
            await _wait_for(lambda: guard.state is GuardState.SAVING)
            assert not call.cancel()
            assert guard.pending is None
            release.set()

        assert finished == [True]

    @pytest.mark.anyio
    async def test_failing_callback_is_logged_not_raised(self, caplog):
        async def callback():
            raise RuntimeError("boom")

        async with anyio.create_task_group() as tg:
            guard = SyncGuard(tg)
            guard.schedule_save(callback, 0.01)
            await anyio.sleep(0.1)

        assert "debounced save callback failed" in caplog.text


class TestSyncEngineSave:
    @pytest.mark.anyio
    async def test_create_initial_saves_once(self):
        store = RecordingStore()
        async with SyncEngine(store, debounce=0.05) as engine:
            assert await engine.create_initial()
            await anyio.sleep(0.2)

        assert len(store.replace_calls) == 1
        [record] = store.records
        outline = _decode_document(record.state).outline()
        assert outline["flavour"] == "page"
        assert outline["props"] == {"title": "Test"}
        [surface] = outline["children"]
        assert surface["flavour"] == "surface"
        [note] = surface["children"]
        assert note["flavour"] == "note"
        [paragraph] = note["children"]
        assert paragraph["flavour"] == "paragraph"
        assert paragraph["props"] == {"text": "Hello World!"}

    @pytest.mark.anyio
    async def test_create_initial_rejects_existing_content(self):
        doc, _ = _page_document()
        engine = SyncEngine(RecordingStore(), doc)
        with pytest.raises(RuntimeError):
            await engine.create_initial()

    @pytest.mark.anyio
    async def test_edits_in_window_coalesce(self):
        doc, page = _page_document()
        store = RecordingStore()
        async with SyncEngine(store, doc, debounce=0.05) as engine:
            for i in range(5):
                engine.document.set_attribute(page, "title", f"draft {i}")
                last_edit = anyio.current_time()
                await anyio.sleep(0.01)
            await anyio.sleep(0.2)

        assert len(store.replace_calls) == 1
        saved_at, state = store.replace_calls[0]
        assert saved_at - last_edit >= 0.05 - TIMER_SLACK
        saved = _decode_document(state)
        assert saved.attributes(page)["title"] == "draft 4"

    @pytest.mark.anyio
    async def test_two_edits_100ms_apart_write_final_state_once(self):
        doc, page = _page_document()
        store = RecordingStore()
        async with SyncEngine(store, doc, debounce=0.5) as engine:
            engine.document.set_attribute(page, "title", "first edit")
            await anyio.sleep(0.1)
            engine.document.set_attribute(page, "title", "second edit")
            second_edit = anyio.current_time()

            await _wait_for(lambda: store.replace_calls)
            await anyio.sleep(0.6)

        assert len(store.replace_calls) == 1
        saved_at, state = store.replace_calls[0]
        assert saved_at - second_edit >= 0.5 - TIMER_SLACK
        assert _decode_document(state).attributes(page)["title"] == "second edit"

    @pytest.mark.anyio
    async def test_save_failure_is_reported_and_not_retried(self):
        doc, page = _page_document()
        store = RecordingStore()
        store.fail_creates = 1
        errors = []
        async with SyncEngine(store, doc, debounce=0.05) as engine:
            engine.on(SyncEvent.ON_ERROR, lambda _engine, op, exc: errors.append((op, exc)))
            assert not await engine.save()
            await anyio.sleep(0.2)
            assert store.records == []
            assert len(store.replace_calls) == 1

            # the next local edit is the retry path
            engine.document.set_attribute(page, "title", "retry")
            await _wait_for(lambda: store.records)

        assert [op for op, _ in errors] == ["save"]
        assert isinstance(errors[0][1], RemoteUnavailable)
        assert _decode_document(store.records[0].state).attributes(page)["title"] == "retry"

    @pytest.mark.anyio
    async def test_save_replaces_stale_records(self):
        doc, _ = _page_document()
        store = RecordingStore([SnapshotRecord("1", "b2xk"), SnapshotRecord("2", "b2xkZXI=")])
        engine = SyncEngine(store, doc)
        assert await engine.save()
        [record] = store.records
        assert record.id not in {"1", "2"}
        assert _decode_document(record.state).outline() == doc.outline()

    @pytest.mark.anyio
    async def test_save_is_noop_while_applying_remote(self):
        doc, _ = _page_document()
        store = RecordingStore()
        engine = SyncEngine(store, doc)
        with engine.guard.applying_remote():
            assert not await engine.save()
        assert store.replace_calls == []

    @pytest.mark.anyio
    async def test_pending_save_flushed_on_close(self):
        doc, page = _page_document()
        store = RecordingStore()
        async with SyncEngine(store, doc, debounce=10) as engine:
            engine.document.set_attribute(page, "title", "unsaved")
        assert len(store.replace_calls) == 1

    @pytest.mark.anyio
    async def test_pending_save_dropped_without_flush_on_close(self):
        doc, page = _page_document()
        store = RecordingStore()
        async with SyncEngine(store, doc, debounce=10, flush_on_close=False) as engine:
            engine.document.set_attribute(page, "title", "unsaved")
        assert store.replace_calls == []

    @pytest.mark.anyio
    async def test_edits_while_stopped_do_not_schedule(self):
        doc, page = _page_document()
        store = RecordingStore()
        engine = SyncEngine(store, doc, debounce=0.01)
        engine.document.set_attribute(page, "title", "offline")
        assert engine.guard.pending is None
        assert not engine.is_running


class TestSyncEngineLoad:
    @pytest.mark.anyio
    async def test_load_merges_without_saving(self):
        remote_doc, _ = _page_document(peer_id=7)
        store = RecordingStore([SnapshotRecord("1", codec.encode(remote_doc.get_full_state()))])
        loaded = []
        async with SyncEngine(store, debounce=0.05) as engine:
            engine.on(SyncEvent.AFTER_LOAD, lambda _engine, record: loaded.append(record.id))
            assert await engine.load()
            assert engine.guard.pending is None
            await anyio.sleep(0.2)

        assert store.replace_calls == []
        assert loaded == ["1"]
        assert engine.document.is_loaded
        assert engine.document.outline() == remote_doc.outline()

    @pytest.mark.anyio
    async def test_unguarded_import_would_schedule_save(self):
        remote_doc, _ = _page_document(peer_id=7)
        async with SyncEngine(RecordingStore(), debounce=10, flush_on_close=False) as engine:
            engine.document.apply_update(remote_doc.get_full_state())
            assert engine.guard.state is GuardState.PENDING

    @pytest.mark.anyio
    async def test_load_empty_store_is_noop(self):
        engine = SyncEngine(RecordingStore())
        assert not await engine.load()
        assert engine.document.root_id is None
        assert not engine.document.is_loaded

    @pytest.mark.anyio
    async def test_load_picks_first_of_several_records(self):
        first, _ = _page_document(peer_id=7, title="first")
        second, _ = _page_document(peer_id=8, title="second")
        store = RecordingStore([
            SnapshotRecord("1", codec.encode(first.get_full_state())),
            SnapshotRecord("2", codec.encode(second.get_full_state())),
        ])
        engine = SyncEngine(store)
        assert await engine.load()
        assert engine.document.outline() == first.outline()

    @pytest.mark.anyio
    async def test_load_failure_leaves_document_untouched(self):
        doc, _ = _page_document()
        before = doc.outline()
        store = RecordingStore()
        store.fail_lists = 1
        errors = []
        engine = SyncEngine(store, doc)
        engine.on(SyncEvent.ON_ERROR, lambda _engine, op, exc: errors.append((op, exc)))
        assert not await engine.load()
        assert doc.outline() == before
        assert [op for op, _ in errors] == ["load"]

    @pytest.mark.anyio
    async def test_load_rejects_corrupt_state_text(self):
        store = RecordingStore([SnapshotRecord("1", "not*base64")])
        errors = []
        engine = SyncEngine(store)
        engine.on(SyncEvent.ON_ERROR, lambda _engine, op, exc: errors.append(exc))
        assert not await engine.load()
        assert isinstance(errors[0], DecodingError)
        assert not engine.guard.is_applying_remote
        assert engine.document.root_id is None

    @pytest.mark.anyio
    async def test_load_rejects_state_that_is_not_a_crdt_update(self):
        store = RecordingStore([SnapshotRecord("1", codec.encode(b"\x00garbage"))])
        errors = []
        engine = SyncEngine(store)
        engine.on(SyncEvent.ON_ERROR, lambda _engine, op, exc: errors.append((op, exc)))
        assert not await engine.load()
        [(op, exc)] = errors
        assert op == "load"
        assert isinstance(exc, InvalidUpdate)
        assert not engine.guard.is_applying_remote
        assert engine.document.root_id is None
        assert not engine.document.is_loaded

    @pytest.mark.anyio
    async def test_uncommitted_local_edit_is_saved_across_load(self):
        remote_doc, _ = _page_document(peer_id=7)
        store = RecordingStore([SnapshotRecord("1", codec.encode(remote_doc.get_full_state()))])
        async with SyncEngine(store, debounce=0.05) as engine:
            local_page = engine.document.add_structural_node(
                "page", {"title": "local draft"}, commit=False
            )
            assert await engine.load()
            await _wait_for(lambda: store.replace_calls)

        [record] = store.records
        saved = _decode_document(record.state)
        assert saved.has_block(local_page)
        assert saved.attributes(local_page) == {"title": "local draft"}

    @pytest.mark.anyio
    async def test_edit_after_load_is_saved(self):
        remote_doc, page = _page_document(peer_id=7)
        store = RecordingStore([SnapshotRecord("1", codec.encode(remote_doc.get_full_state()))])
        async with SyncEngine(store, debounce=0.05) as engine:
            await engine.load()
            engine.document.set_attribute(page, "title", "edited locally")
            await _wait_for(lambda: store.replace_calls)

        [record] = store.records
        assert _decode_document(record.state).attributes(page)["title"] == "edited locally"


class TestSyncEngineClearAndRecover:
    @pytest.mark.anyio
    async def test_clear_remote_keeps_local_document(self):
        doc, _ = _page_document()
        store = RecordingStore([SnapshotRecord("1", "a"), SnapshotRecord("2", "b")])
        cleared = []
        engine = SyncEngine(store, doc)
        engine.on(SyncEvent.AFTER_CLEAR, lambda _engine, count: cleared.append(count))
        assert await engine.clear_remote()
        assert store.records == []
        assert cleared == [2]
        assert doc.root_id is not None

    @pytest.mark.anyio
    async def test_recover_replays_journal_after_failed_save(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "journal.bin"
            doc, _ = _page_document()
            failing = RecordingStore()
            failing.fail_creates = 1
            assert not await SyncEngine(failing, doc, journal=SaveJournal(path)).save()

            store = RecordingStore()
            engine = SyncEngine(store, journal=SaveJournal(path))
            assert await engine.recover()
            assert engine.document.outline() == doc.outline()
            assert len(engine.journal) == 0
            assert len(store.records) == 1

    @pytest.mark.anyio
    async def test_recover_without_journal_is_noop(self):
        engine = SyncEngine(RecordingStore())
        assert not await engine.recover()

    @pytest.mark.anyio
    async def test_successful_save_compacts_journal(self):
        doc, _ = _page_document()
        journal = SaveJournal()
        engine = SyncEngine(RecordingStore(), doc, journal=journal)
        assert await engine.save()
        assert len(journal) == 0

    @pytest.mark.anyio
    async def test_journal_compact_failure_does_not_fail_save(self, caplog):
        class BrokenCompactJournal(SaveJournal):
            def compact(self):
                raise OSError("disk full")

        doc, _ = _page_document()
        store = RecordingStore()
        engine = SyncEngine(store, doc, journal=BrokenCompactJournal())
        assert await engine.save()
        assert len(store.records) == 1
        assert "failed to compact save journal" in caplog.text


class TestSyncEngineOverHttp:
    @pytest.mark.anyio
    async def test_create_then_load_in_fresh_engine(self):
        app, db = make_documents_app()
        async with serve(app) as url:
            config = SyncConfig(remote_url=url, debounce=0.05)
            async with SyncEngine.from_config(config) as writer:
                assert await writer.create_initial(title="Test", text="Hello World!")
            assert len(db["records"]) == 1

            async with SyncEngine.from_config(config) as reader:
                assert await reader.load()
                await anyio.sleep(0.2)
            assert reader.document.outline() == writer.document.outline()
            assert len(db["records"]) == 1
            assert db["deleted"] == []

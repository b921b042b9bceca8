"""Local round trip: two engines sharing one in-memory snapshot slot.

Demonstrates the create / load / clear actions and debounced saving.
"""

import asyncio
import logging

from docsync import InMemoryRemoteStore, SyncEngine, SyncEvent


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    remote = InMemoryRemoteStore()

    # "create": fresh document with a page skeleton, saved once
    async with SyncEngine(remote, debounce=0.2) as writer:
        await writer.create_initial(title="Test", text="Hello World!")
        page = writer.document.root_id
        print(f"[writer] created page {page}; remote holds {len(remote.records)} record(s)")

        # A burst of edits turns into a single save after the quiet period
        for i in range(5):
            writer.document.set_attribute(page, "title", f"Draft {i}")
            await asyncio.sleep(0.05)
        await asyncio.sleep(0.4)
        print(f"[writer] after burst remote holds {len(remote.records)} record(s)")

    # "load": a second engine merges the remote snapshot without echoing a save
    async with SyncEngine(remote, debounce=0.2) as reader:
        reader.on(SyncEvent.AFTER_LOAD, lambda _engine, record: print(f"[reader] loaded record {record.id}"))
        await reader.load()
        outline = reader.document.outline()
        print(f"[reader] title: {outline['props']['title']}")
        for child in outline["children"]:
            print(f"[reader]   {child['flavour']}: {child['props']}")

        # "clear": drop the remote snapshot; the local document is kept
        await reader.clear_remote()
        print(f"[reader] remote cleared; local blocks: {reader.document.block_count()}")


if __name__ == "__main__":
    asyncio.run(main())

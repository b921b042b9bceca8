"""Sync against a REST ``/documents`` endpoint configured via DOCSYNC_* env vars.

Usage:
    DOCSYNC_REMOTE_URL=https://<id>.mockapi.io/documents python http_sync.py create
    DOCSYNC_REMOTE_URL=... python http_sync.py load
    DOCSYNC_REMOTE_URL=... python http_sync.py clear
"""

import asyncio
import logging
import sys

from docsync import SyncConfig, SyncEngine, SyncEvent


async def main(action: str) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    config = SyncConfig.from_env()

    async with SyncEngine.from_config(config) as engine:
        engine.on(SyncEvent.ON_ERROR, lambda _engine, op, exc: print(f"{op} failed: {exc}", file=sys.stderr))
        await engine.recover()
        if action == "create":
            ok = await engine.create_initial(title="Test", text="Hello World!")
        elif action == "load":
            ok = await engine.load()
            if ok:
                print(engine.document.outline())
        elif action == "clear":
            ok = await engine.clear_remote()
        else:
            print(__doc__, file=sys.stderr)
            return 2
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "")))

import pytest


@pytest.fixture(scope="module")
def anyio_backend():
    # aiohttp requires asyncio; run async tests only on the asyncio backend
    return "asyncio"

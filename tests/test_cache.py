import asyncio

import pytest

from lpstats.utils.cache import RequestCache


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_fetch():
    cache = RequestCache()
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0.01)
        return 42

    results = await asyncio.gather(
        *(cache.get_or_fetch("get_sqrt_price", ("0xpool", 100), fetch) for _ in range(5))
    )

    assert results == [42] * 5
    assert len(calls) == 1
    assert cache.get("get_sqrt_price", ("0xpool", 100)) == 42


@pytest.mark.asyncio
async def test_cached_value_is_reused():
    cache = RequestCache()
    cache.set("get_block_timestamp", (7,), 1700000000)

    async def fetch():
        raise AssertionError("should not fetch a cached key")

    assert await cache.get_or_fetch("get_block_timestamp", (7,), fetch) == 1700000000


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached():
    cache = RequestCache()

    async def failing():
        raise ConnectionError("rpc down")

    async def succeeding():
        return "ok"

    with pytest.raises(ConnectionError):
        await cache.get_or_fetch("owner_of", (1,), failing)
    assert not cache.has("owner_of", (1,))

    assert await cache.get_or_fetch("owner_of", (1,), succeeding) == "ok"
    assert cache.has("owner_of", (1,))


def test_save_and_load(tmp_path):
    path = tmp_path / "cache.json"
    cache = RequestCache()
    cache.set("get_sqrt_price", ("0xpool", 100), 79228162514264337593543950336)
    cache.set("get_token", ("0xtoken",), {"symbol": "USDC", "decimals": 6})
    cache.save(path)

    restored = RequestCache()
    restored.load(path)

    assert len(restored) == 2
    assert restored.get("get_sqrt_price", ("0xpool", 100)) == 79228162514264337593543950336
    assert restored.get("get_token", ("0xtoken",)) == {"symbol": "USDC", "decimals": 6}


def test_load_missing_file(tmp_path):
    cache = RequestCache()
    cache.load(tmp_path / "missing.json")
    assert len(cache) == 0


def test_clear():
    cache = RequestCache()
    cache.set("get_block_timestamp", (1,), 1)
    cache.clear()
    assert len(cache) == 0

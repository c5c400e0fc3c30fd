"""
Request cache for chain reads.

Keys are (method, params) tuples. Entries never expire within a session and
can be persisted to / restored from a JSON file between sessions.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
CacheKey = Tuple[str, Tuple[Hashable, ...]]


class RequestCache:
    """
    Cache manager for upstream requests.

    Concurrent lookups of the same key share one in-flight fetch, so a key
    is requested upstream at most once. Failed fetches are not cached.
    """

    def __init__(self):
        """Initialize empty cache."""
        self._cache: Dict[CacheKey, Any] = {}
        self._in_flight: Dict[CacheKey, asyncio.Future] = {}

    @staticmethod
    def make_key(method: str, params: Tuple[Hashable, ...]) -> CacheKey:
        return method, tuple(params)

    def has(self, method: str, params: Tuple[Hashable, ...]) -> bool:
        return self.make_key(method, params) in self._cache

    def get(self, method: str, params: Tuple[Hashable, ...]) -> Optional[Any]:
        return self._cache.get(self.make_key(method, params))

    def set(self, method: str, params: Tuple[Hashable, ...], value: Any) -> None:
        self._cache[self.make_key(method, params)] = value

    def clear(self) -> None:
        """Clear all cached entries."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    async def get_or_fetch(
        self,
        method: str,
        params: Tuple[Hashable, ...],
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Return the cached value for (method, params), fetching it if needed.

        Args:
            method: Request tag, e.g. "get_sqrt_price"
            params: Hashable request parameters
            fetch: Zero-argument coroutine function performing the request

        Returns:
            The cached or freshly fetched value
        """
        key = self.make_key(method, params)
        if key in self._cache:
            return self._cache[key]

        pending = self._in_flight.get(key)
        if pending is not None:
            return await pending

        task = asyncio.ensure_future(fetch())
        self._in_flight[key] = task
        try:
            result = await task
        finally:
            self._in_flight.pop(key, None)

        self._cache[key] = result
        return result

    def save(self, path: Union[str, Path]) -> None:
        """Persist all entries to a JSON file."""
        entries = [
            {"method": method, "params": list(params), "value": value}
            for (method, params), value in self._cache.items()
        ]
        with open(path, "w") as f:
            json.dump(entries, f)
        logger.info(f"Saved {len(entries)} cache entries to {path}")

    def load(self, path: Union[str, Path]) -> None:
        """Load entries from a JSON file written by `save`; missing files are ignored."""
        path = Path(path)
        if not path.is_file():
            logger.debug(f"No cache file at {path}")
            return

        with open(path, "r") as f:
            entries = json.load(f)

        for entry in entries:
            self.set(entry["method"], tuple(_freeze(p) for p in entry["params"]), entry["value"])
        logger.info(f"Loaded {len(entries)} cache entries from {path}")


def _freeze(value: Any) -> Hashable:
    """JSON turns tuples into lists; turn them back so keys stay hashable."""
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value

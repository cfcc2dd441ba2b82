from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Protocol

from redis import Redis

from shortlink.config import settings

logger = logging.getLogger(__name__)


class KeyValueSource(Protocol):
    def iter_entries(self) -> Iterator[tuple[str, str | None]]:
        ...


class RedisKVSource:
    """
    Legacy key-value store: one Redis key per path, value is the JSON record.

    iter_entries() walks SCAN cursors until Redis hands back cursor 0, then
    fetches each key. Keys vanishing mid-walk yield None. Calling it again
    starts a fresh walk.
    """

    def __init__(self, client: Redis, scan_count: int = 1000, match: str | None = None) -> None:
        self.client = client
        self.scan_count = scan_count
        self.match = match

    @classmethod
    def from_url(cls, url: str, scan_count: int = 1000) -> RedisKVSource:
        return cls(Redis.from_url(url, decode_responses=True), scan_count=scan_count)

    def iter_keys(self) -> Iterator[str]:
        # SCAN may return a key more than once during a rehash.
        seen: set[str] = set()
        cursor = 0
        while True:
            cursor, keys = self.client.scan(cursor=cursor, match=self.match, count=self.scan_count)
            for key in keys:
                if key not in seen:
                    seen.add(key)
                    yield key
            if not cursor:
                break

    def iter_entries(self) -> Iterator[tuple[str, str | None]]:
        for key in self.iter_keys():
            yield key, self.client.get(key)


def get_legacy_source() -> RedisKVSource:
    return RedisKVSource.from_url(settings.legacy_redis_url, scan_count=settings.migrate_scan_count)

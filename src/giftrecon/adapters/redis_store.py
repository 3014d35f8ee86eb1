from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ..domain.errors import StoreWriteError
from ..ports.storage import EventStore, StreamEntry

logger = logging.getLogger(__name__)

# KEYS: guard, stream. ARGV: guard ttl, then field/value pairs.
# Guard and entry are written together or not at all; nil for a duplicate.
_RECORD_EVENT_LUA = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return false
end
local unpack = unpack or table.unpack
local id = redis.call('XADD', KEYS[2], '*', unpack(ARGV, 2))
redis.call('SET', KEYS[1], '1', 'EX', ARGV[1])
return id
"""


class RedisEventStore(EventStore):
    """EventStore on Redis: scalar watermark, guard keys, one stream, roll-up hashes.

    Every key lives under `prefix` (default ``ga:v1:``).
    """

    def __init__(self, client: redis.Redis, prefix: str = "ga:v1:") -> None:
        self.r = client
        self.prefix = prefix
        self._record = client.register_script(_RECORD_EVENT_LUA)

    @classmethod
    def from_url(cls, url: str, prefix: str = "ga:v1:") -> RedisEventStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix)

    def _k(self, suffix: str) -> str:
        return self.prefix + suffix

    @property
    def stream_key(self) -> str:
        return self._k("events")

    # ── watermark ────────────────────────────────────────────────

    async def get_watermark(self) -> int:
        raw = await self.r.get(self._k("lastProcessedBlock"))
        return int(raw) if raw else 0

    async def set_watermark(self, block: int) -> int:
        key = self._k("lastProcessedBlock")
        async with self.r.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = int(raw) if raw else 0
                    if block <= current:
                        await pipe.unwatch()
                        return current
                    pipe.multi()
                    pipe.set(key, str(block))
                    pipe.set(self._k("lastProcessedAt"), _utc_iso())
                    await pipe.execute()
                    return block
                except WatchError:
                    logger.debug("watermark moved concurrently, re-reading")
                    continue

    # ── idempotent append ────────────────────────────────────────

    async def record_event(self, event_id: str, fields: Mapping[str, str], guard_ttl_s: int) -> str | None:
        flat: list[str] = []
        for k, v in fields.items():
            flat += [k, v]
        try:
            return await self._record(
                keys=[self._k(f"event:processed:{event_id}"), self.stream_key],
                args=[guard_ttl_s, *flat],
            )
        except RedisError as e:
            raise StoreWriteError(f"stream append failed for {event_id}: {e}") from e

    async def read_events(self, start_id: str, end_id: str = "+", count: int | None = None) -> list[StreamEntry]:
        entries = await self.r.xrange(self.stream_key, min=start_id, max=end_id, count=count)
        return [(sid, dict(fields)) for sid, fields in entries]

    # ── roll-ups and meta ────────────────────────────────────────

    async def write_rollups(self, records: Sequence[tuple[str, Mapping[str, str], int | None]]) -> None:
        if not records:
            return
        async with self.r.pipeline(transaction=True) as pipe:
            for suffix, fields, ttl in records:
                key = self._k(suffix)
                pipe.delete(key)
                pipe.hset(key, mapping=dict(fields))
                if ttl:
                    pipe.expire(key, ttl)
            await pipe.execute()

    async def get_rollup(self, key: str) -> dict[str, str]:
        return dict(await self.r.hgetall(self._k(key)))

    async def set_meta(self, values: Mapping[str, str]) -> None:
        if values:
            await self.r.mset({self._k(k): v for k, v in values.items()})

    async def get_meta(self, key: str) -> str | None:
        return await self.r.get(self._k(key))

    async def ping(self) -> bool:
        try:
            return bool(await self.r.ping())
        except RedisError:
            return False

    async def aclose(self) -> None:
        await self.r.aclose()


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# giftrecon/ports/storage.py
from __future__ import annotations

from typing import Mapping, Protocol, Sequence

StreamEntry = tuple[str, dict[str, str]]   # (stream id, flat fields)


class EventStore(Protocol):
    """Port for the key-value/stream store backing reconciliation and roll-ups."""

    async def get_watermark(self) -> int:
        """Last fully reconciled block (0 when never set)."""

    async def set_watermark(self, block: int) -> int:
        """Persist `block` unless lower than the stored value; return the stored value."""

    async def record_event(self, event_id: str, fields: Mapping[str, str], guard_ttl_s: int) -> str | None:
        """Atomically claim the guard for `event_id` and append `fields` to the stream.

        Returns the generated stream id, or None if the guard was already held.
        Raises StoreWriteError if the write fails; neither guard nor entry is kept then.
        """

    async def read_events(self, start_id: str, end_id: str = "+", count: int | None = None) -> list[StreamEntry]:
        """Stream entries with ids in [start_id, end_id], oldest first."""

    async def write_rollups(self, records: Sequence[tuple[str, Mapping[str, str], int | None]]) -> None:
        """Overwrite roll-up hashes as (key suffix, fields, ttl seconds or None), in one batch."""

    async def get_rollup(self, key: str) -> dict[str, str]:
        """Roll-up hash under `key` suffix (empty when absent)."""

    async def set_meta(self, values: Mapping[str, str]) -> None:
        """Set informational scalar keys (last run timestamps, counts)."""

    async def get_meta(self, key: str) -> str | None: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...

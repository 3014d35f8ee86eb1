"""In-memory collaborators and raw-log builders shared by the tests."""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Callable, Mapping, Sequence

from giftrecon.application.materialize import Materializer
from giftrecon.application.reconcile import Reconciler
from giftrecon.config import MaterializeConfig, ReconcileConfig
from giftrecon.domain.decoding import ESCROW_EVENTS
from giftrecon.domain.errors import StoreWriteError
from giftrecon.domain.models import EventLog
from giftrecon.presentation.runtime import Runtime

ESCROW = "0x46175CfC233500DA803841DEef7f2816e7A129E0"
T0 = {s.kind: s.topic0 for s in ESCROW_EVENTS}

CREATOR = "0x00000000000000000000000000000000000000a1"
CLAIMER = "0x00000000000000000000000000000000000000c1"
CLAIMER_2 = "0x00000000000000000000000000000000000000c2"

# 2024-01-01T10:00:00Z
HOUR_10 = 1704103200

_INF = 1 << 64


def _sid(stream_id: str, low: bool) -> tuple[int, int]:
    if stream_id == "-":
        return (0, 0)
    if stream_id == "+":
        return (_INF, _INF)
    ms, _, seq = stream_id.partition("-")
    if not seq:
        return (int(ms), 0 if low else _INF)
    return (int(ms), int(seq))


class MemoryEventStore:
    """Dict-backed EventStore with Redis-like stream ids."""

    def __init__(self, clock_ms: Callable[[], int] | None = None) -> None:
        self.kv: dict[str, str] = {}
        self.guards: dict[str, int] = {}
        self.stream: list[tuple[str, dict[str, str]]] = []
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int | None] = {}
        self.meta: dict[str, str] = {}
        self.clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.fail_appends = 0
        self.mutations = 0

    async def get_watermark(self) -> int:
        return int(self.kv.get("lastProcessedBlock", 0))

    async def set_watermark(self, block: int) -> int:
        current = await self.get_watermark()
        if block <= current:
            return current
        self.kv["lastProcessedBlock"] = str(block)
        self.mutations += 1
        return block

    async def record_event(self, event_id: str, fields: Mapping[str, str], guard_ttl_s: int) -> str | None:
        if event_id in self.guards:
            return None
        self.guards[event_id] = guard_ttl_s
        if self.fail_appends:
            self.fail_appends -= 1
            del self.guards[event_id]
            raise StoreWriteError(f"injected append failure for {event_id}")
        sid = self._next_id()
        self.stream.append((sid, dict(fields)))
        self.mutations += 1
        return sid

    def _next_id(self) -> str:
        ms = self.clock_ms()
        if self.stream:
            last_ms, last_seq = _sid(self.stream[-1][0], True)
            if ms <= last_ms:
                return f"{last_ms}-{last_seq + 1}"
        return f"{ms}-0"

    async def read_events(self, start_id: str, end_id: str = "+", count: int | None = None):
        lo, hi = _sid(start_id, True), _sid(end_id, False)
        out = [(sid, dict(f)) for sid, f in self.stream if lo <= _sid(sid, True) <= hi]
        return out[:count] if count else out

    async def write_rollups(self, records: Sequence[tuple[str, Mapping[str, str], int | None]]) -> None:
        for key, fields, ttl in records:
            self.hashes[key] = dict(fields)
            self.ttls[key] = ttl
            self.mutations += 1

    async def get_rollup(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def set_meta(self, values: Mapping[str, str]) -> None:
        self.meta.update(values)

    async def get_meta(self, key: str) -> str | None:
        return self.meta.get(key)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


class ScriptedRPC:
    """RPC stub serving a fixed log set; `errors[topic0]` may inject failures per call."""

    def __init__(self, head: int = 0, logs: Sequence[EventLog] = ()) -> None:
        self.head = head
        self.logs = list(logs)
        self.calls: list[tuple[tuple[str, ...], int, int]] = []
        self.errors: dict[str, Callable[[int, int], Exception | None]] = {}

    async def latest_block(self) -> int:
        return self.head

    async def get_logs(self, address, topic0s, from_block, to_block):
        self.calls.append((tuple(topic0s), from_block, to_block))
        for t in topic0s:
            hook = self.errors.get(t)
            if hook is not None:
                exc = hook(from_block, to_block)
                if exc is not None:
                    raise exc
        return [l for l in self.logs if l.topics[0] in topic0s and from_block <= l.block_number <= to_block]


def _w(n: int) -> str:
    return f"{n:064x}"

def _addr_topic(addr: str) -> str:
    return "0x" + "0" * 24 + addr[2:].lower()

def _tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def created_log(gift_id: int, amount: int, *, block: int, tx: int, log_index: int = 0,
                creator: str = CREATOR, token_id: int = 1, expires_at: int = 0,
                ts: int | None = None) -> EventLog:
    return EventLog(ESCROW.lower(), (T0["GiftCreated"], "0x" + _w(gift_id), _addr_topic(creator)),
                    "0x" + _w(token_id) + _w(amount) + _w(expires_at), block, _tx(tx), log_index, ts)

def claimed_log(gift_id: int, *, block: int, tx: int, log_index: int = 0,
                claimer: str = CLAIMER, token_id: int = 1, ts: int | None = None) -> EventLog:
    return EventLog(ESCROW.lower(), (T0["GiftClaimed"], "0x" + _w(gift_id), _addr_topic(claimer)),
                    "0x" + _w(token_id), block, _tx(tx), log_index, ts)

def expired_log(gift_id: int, *, block: int, tx: int, log_index: int = 0,
                token_id: int = 1, ts: int | None = None) -> EventLog:
    return EventLog(ESCROW.lower(), (T0["GiftExpired"], "0x" + _w(gift_id)),
                    "0x" + _w(token_id), block, _tx(tx), log_index, ts)

def returned_log(gift_id: int, amount: int, *, block: int, tx: int, log_index: int = 0,
                 creator: str = CREATOR, token_id: int = 1, ts: int | None = None) -> EventLog:
    return EventLog(ESCROW.lower(), (T0["GiftReturned"], "0x" + _w(gift_id), _addr_topic(creator)),
                    "0x" + _w(token_id) + _w(amount), block, _tx(tx), log_index, ts)


def reconcile_config(**overrides) -> ReconcileConfig:
    base = dict(contract_address=ESCROW, rewind_blocks=12, confirmations=3,
                block_window=2_000, backoff_s=0.0, budget_s=5.0)
    base.update(overrides)
    return ReconcileConfig(**base)


async def _no_sleep(_: float) -> None:
    return None


def make_reconciler(rpc: ScriptedRPC, store: MemoryEventStore, **overrides) -> Reconciler:
    return Reconciler(rpc, store, reconcile_config(**overrides), sleep=_no_sleep)


def runtime_factory(store: MemoryEventStore, rpc: ScriptedRPC, **overrides):
    @asynccontextmanager
    async def factory(settings):
        yield Runtime(store, rpc, make_reconciler(rpc, store, **overrides),
                      Materializer(store, MaterializeConfig()))
    return factory

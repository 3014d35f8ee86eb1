from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Callable

from ..adapters.error_classifier import PatternErrorClassifier
from ..adapters.redis_store import RedisEventStore
from ..adapters.rpc_httpx import HttpxRPC
from ..application.materialize import Materializer
from ..application.reconcile import Reconciler
from ..config import Settings
from ..ports.rpc import RPCClient
from ..ports.storage import EventStore


@dataclass(slots=True)
class Runtime:
    store: EventStore
    rpc: RPCClient
    reconciler: Reconciler
    materializer: Materializer


RuntimeFactory = Callable[[Settings], AsyncContextManager[Runtime]]


@asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[Runtime]:
    """Redis store + httpx RPC wired into a reconciler and a materializer; closed on exit."""
    store = RedisEventStore.from_url(settings.redis_url, prefix=settings.key_prefix)
    rpc = HttpxRPC(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    try:
        yield Runtime(
            store=store,
            rpc=rpc,
            reconciler=Reconciler(
                rpc, store, settings.reconcile_config(),
                classifier=PatternErrorClassifier(settings.range_patterns()),
            ),
            materializer=Materializer(store, settings.materialize_config()),
        )
    finally:
        await rpc.aclose()
        await store.aclose()

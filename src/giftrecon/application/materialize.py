from __future__ import annotations

import logging
import time

from ..config import MaterializeConfig
from ..domain.errors import EventDecodeError
from ..domain.models import CanonicalEvent, MaterializeResult
from ..domain.rollups import RollupSet
from ..ports.storage import EventStore
from .utils import _now_iso, new_trace_id, with_budget

logger = logging.getLogger(__name__)


class Materializer:
    """Recomputes roll-ups from the trailing window of the event stream.

    The window is bounded by stream ids (``<millis>-0`` to ``+``), not by the
    events' own timestamps. Buckets are rebuilt from scratch on every pass and
    overwritten; an empty window writes no roll-up keys at all, so a missing
    key means "nothing observed yet" rather than "zero".
    """

    def __init__(self, store: EventStore, config: MaterializeConfig | None = None) -> None:
        self.store = store
        self.config = config or MaterializeConfig()

    async def run_with_budget(self, now_ms: int | None = None, *, trace_id: str | None = None) -> MaterializeResult:
        return await with_budget(self.run(now_ms, trace_id=trace_id), self.config.budget_s, "materialization")

    async def run(self, now_ms: int | None = None, *, trace_id: str | None = None) -> MaterializeResult:
        started = time.monotonic()
        trace_id = trace_id or new_trace_id("materialize")
        cfg = self.config
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        start_id = f"{max(0, now_ms - cfg.lookback_s * 1000)}-0"

        entries = await self.store.read_events(start_id, "+", count=cfg.max_entries)
        logger.info("trace=%s processing %d stream entries from id %s", trace_id, len(entries), start_id)

        rollups = RollupSet()
        result = MaterializeResult(trace_id=trace_id)
        for stream_id, fields in entries:
            try:
                ev = CanonicalEvent.from_stream_fields(fields)
            except EventDecodeError as e:
                result.skipped += 1
                logger.warning("trace=%s skipping stream entry %s: %s", trace_id, stream_id, e)
                continue
            rollups.add(ev, cfg.token_decimals)
            result.events_processed += 1

        if result.events_processed:
            records: list[tuple[str, dict[str, str], int | None]] = []
            for hour, stats in sorted(rollups.hourly.items()):
                records.append((f"rollup:hourly:{hour}", stats.to_hash(), cfg.hourly_ttl_s))
            for day, stats in sorted(rollups.daily.items()):
                records.append((f"rollup:daily:{day}", stats.to_hash(), cfg.daily_ttl_s))
            for campaign, stats in sorted(rollups.campaigns.items()):
                records.append((f"rollup:campaign:{campaign}", stats.to_hash(), None))
            records.append(("rollup:global", rollups.global_.to_hash(), None))
            await self.store.write_rollups(records)
            result.hourly = len(rollups.hourly)
            result.daily = len(rollups.daily)
            result.campaigns = len(rollups.campaigns)

        await self.store.set_meta({
            "materialization:lastRun": _now_iso(),
            "materialization:lastEventCount": str(len(entries)),
        })
        result.processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "trace=%s materialization completed events=%d skipped=%d hourly=%d daily=%d campaigns=%d in %dms",
            trace_id, result.events_processed, result.skipped, result.hourly,
            result.daily, result.campaigns, result.processing_time_ms,
        )
        return result

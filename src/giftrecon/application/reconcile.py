"""Reconciliation driver.

One pass walks ComputingWindow -> FetchingPerEventType (one fetch per kind,
sequential) -> Advancing. The watermark is written last, after every kind
has been fetched and processed, so a crash or timeout mid-pass leaves it
where it was and the next tick re-scans the same range. Re-scans are safe
because every append is guarded by the event's idempotency key.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

from ..adapters.error_classifier import PatternErrorClassifier
from ..config import ReconcileConfig
from ..domain.decoding import ESCROW_EVENTS, BlockClock, decode_log
from ..domain.errors import EventDecodeError, StoreWriteError
from ..domain.models import EventLog, EventSpec, FetchOutcome, ReconcileResult
from ..domain.value_types import Address
from ..ports.rpc import ErrorClassifier, RPCClient
from ..ports.storage import EventStore
from .fetching import Sleep, fetch_with_backoff
from .planning import PassWindow, compute_window
from .processing import CanonicalEventProcessor
from .utils import new_trace_id, with_budget

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(
        self,
        rpc: RPCClient,
        store: EventStore,
        config: ReconcileConfig,
        *,
        classifier: ErrorClassifier | None = None,
        processor: CanonicalEventProcessor | None = None,
        events: Sequence[EventSpec] = ESCROW_EVENTS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.store = store
        self.config = config
        self.classifier = classifier or PatternErrorClassifier()
        self.processor = processor or CanonicalEventProcessor(store, guard_ttl_s=config.guard_ttl_s)
        self.events = tuple(events)
        self.clock = BlockClock(config.genesis_timestamp, config.block_time_s)
        self.sleep = sleep

    async def run_with_budget(self, from_block: int | None = None, *, trace_id: str | None = None) -> ReconcileResult:
        return await with_budget(self.run(from_block, trace_id=trace_id), self.config.budget_s, "reconciliation")

    async def run(self, from_block: int | None = None, *, trace_id: str | None = None) -> ReconcileResult:
        started = time.monotonic()
        trace_id = trace_id or new_trace_id("reconcile")
        cfg = self.config

        # ComputingWindow
        last = await self.store.get_watermark()
        head = await self.rpc.latest_block()
        win = compute_window(
            last_processed=last, head=head,
            rewind_blocks=cfg.rewind_blocks, confirmations=cfg.confirmations,
            block_window=cfg.block_window, override=from_block,
        )
        if win.requested.is_empty():
            logger.info("trace=%s no new blocks to process (from=%d to=%d)",
                        trace_id, win.requested.start, win.requested.end)
            return ReconcileResult(
                from_block=win.requested.start, to_block=win.requested.end,
                watermark=last, next_block=last + 1, no_new_blocks=True,
                processing_time_ms=_elapsed_ms(started), trace_id=trace_id,
            )

        logger.info("trace=%s processing block range from=%d to=%d range=%d rewind=%d head=%d",
                    trace_id, win.scan.start, win.scan.end, win.scan.span(), cfg.rewind_blocks, head)
        result = ReconcileResult(from_block=win.scan.start, to_block=win.scan.end, trace_id=trace_id)

        # FetchingPerEventType
        outcomes: list[FetchOutcome] = []
        for spec in self.events:
            outcome = await fetch_with_backoff(
                self.rpc, self.classifier, Address(cfg.contract_address), spec,
                win.scan.start, win.scan.end,
                windows=cfg.backoff_windows, initial_window=cfg.block_window,
                backoff_s=cfg.backoff_s, sleep=self.sleep, trace_id=trace_id,
            )
            if outcome.status == "ok":
                write_errors = result.write_errors
                for log in outcome.logs:
                    await self._process_log(spec, log, result)
                if result.write_errors > write_errors:
                    # some logs of this kind are not durably recorded yet
                    outcome.status = "failed"
                    outcome.error = f"{result.write_errors - write_errors} store write error(s)"
            if outcome.status != "ok":
                result.failed_event_types.append(spec.kind)
            outcomes.append(outcome)

        # Advancing
        target = self._advance_target(win, outcomes)
        if target is None:
            result.watermark = last
            logger.warning("trace=%s watermark held at %d; incomplete kinds: %s",
                           trace_id, last, ",".join(result.failed_event_types))
        else:
            result.watermark = await self.store.set_watermark(target)

        result.next_block = result.watermark + 1
        result.has_more = result.watermark < win.requested.end
        result.processing_time_ms = _elapsed_ms(started)
        logger.info(
            "trace=%s reconciliation completed from=%d to=%d processed=%d duplicates=%d "
            "decode_errors=%d write_errors=%d watermark=%d has_more=%s in %dms",
            trace_id, result.from_block, result.to_block, result.events_processed,
            result.duplicates_skipped, result.decode_errors, result.write_errors,
            result.watermark, result.has_more, result.processing_time_ms,
        )
        return result

    def _advance_target(self, win: PassWindow, outcomes: list[FetchOutcome]) -> int | None:
        """Block the watermark may move to, or None to hold it."""
        if self.config.watermark_policy == "lenient":
            return win.scan.end
        if any(o.status != "ok" for o in outcomes):
            return None
        covered = [o.covered_to for o in outcomes if o.covered_to is not None]
        return min(covered) if covered else win.scan.end

    async def _process_log(self, spec: EventSpec, log: EventLog, result: ReconcileResult) -> None:
        try:
            payload = decode_log(log)
        except EventDecodeError as e:
            result.decode_errors += 1
            logger.warning("trace=%s skipping undecodable %s log %s:%d: %s",
                           result.trace_id, spec.kind, log.tx_hash, log.log_index, e)
            return
        ts = log.block_timestamp if log.block_timestamp is not None else self.clock.estimate(log.block_number)
        try:
            recorded = await self.processor.process(
                payload.kind, log.tx_hash, log.log_index, log.block_number, ts, payload, "reconciliation",
            )
        except StoreWriteError as e:
            result.write_errors += 1
            logger.error("trace=%s store write failed for %s:%d: %s",
                         result.trace_id, log.tx_hash, log.log_index, e)
            return
        if recorded:
            result.events_processed += 1
        else:
            result.duplicates_skipped += 1


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)

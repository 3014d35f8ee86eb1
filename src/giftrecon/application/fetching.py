from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..domain.models import EventSpec, FetchOutcome
from ..domain.value_types import Address
from ..ports.rpc import ErrorClassifier, RPCClient
from .planning import backoff_start_index, capped_end

logger = logging.getLogger(__name__)

DEFAULT_WINDOWS: tuple[int, ...] = (5_000, 2_000, 1_000, 500, 100)

Sleep = Callable[[float], Awaitable[None]]


def _err(e: BaseException) -> str:
    return f"{type(e).__name__}: {e}"


async def fetch_with_backoff(
    rpc: RPCClient,
    classifier: ErrorClassifier,
    address: Address,
    spec: EventSpec,
    from_block: int,
    to_block: int,
    *,
    windows: tuple[int, ...] = DEFAULT_WINDOWS,
    initial_window: int = 2_000,
    backoff_s: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    trace_id: str = "",
) -> FetchOutcome:
    """
    Fetch one event kind over [from_block, to_block], narrowing the range on
    provider range-limit errors.

    Each range-limit error steps down to the next smaller window and retries
    after `backoff_s * retry`. A non-range error abandons the kind for this
    pass; running out of windows fails it. Neither raises: the caller decides
    what a failed kind means for the watermark. On success `covered_to` is the
    last block actually scanned, which is below `to_block` after a backoff.
    """
    if from_block > to_block:
        return FetchOutcome(spec.kind, "ok", [], covered_to=to_block)

    idx = backoff_start_index(windows, initial_window)
    current_to = to_block
    retries = 0
    attempts = 0
    while True:
        attempts += 1
        try:
            logs = await rpc.get_logs(address, [spec.topic0], from_block, current_to)
        except Exception as e:
            if not classifier.is_range_error(e):
                logger.error("trace=%s %s fetch abandoned [%d,%d]: %s",
                             trace_id, spec.kind, from_block, current_to, _err(e))
                return FetchOutcome(spec.kind, "abandoned", attempts=attempts, error=_err(e))

            retries += 1
            if retries < len(windows) and idx < len(windows) - 1:
                idx += 1
                current_to = capped_end(from_block, windows[idx], to_block)
                logger.warning("trace=%s %s backing off: retry=%d window=%d range=[%d,%d]",
                               trace_id, spec.kind, retries, windows[idx], from_block, current_to)
                await sleep(backoff_s * retries)
                continue

            logger.error("trace=%s %s max retries reached after %d attempts: %s",
                         trace_id, spec.kind, attempts, _err(e))
            return FetchOutcome(spec.kind, "failed", attempts=attempts, error=_err(e))

        return FetchOutcome(spec.kind, "ok", logs, covered_to=current_to, attempts=attempts)

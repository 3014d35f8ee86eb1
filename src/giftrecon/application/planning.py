from __future__ import annotations
from dataclasses import dataclass
from ..domain.models import BlockRange

@dataclass(slots=True, frozen=True)
class PassWindow:
    requested: BlockRange    # [from, head - confirmations]
    scan: BlockRange         # [from, actual_to], capped by the block window

    @property
    def has_more(self) -> bool: return self.scan.end < self.requested.end


def start_block(last_processed: int, rewind_blocks: int, override: int | None = None) -> int:
    """First block of a pass: explicit override, else watermark minus the rewind tail."""
    if override is not None:
        return max(0, int(override))
    if last_processed > rewind_blocks:
        return last_processed - rewind_blocks + 1
    return 0


def safe_head(head: int, confirmations: int) -> int:
    return head - confirmations if head > confirmations else head


def capped_end(from_block: int, window: int, to_block: int) -> int:
    """Last block of a `window`-sized range starting at from_block, never past to_block."""
    return to_block if from_block + window > to_block else from_block + window - 1


def compute_window(
    *,
    last_processed: int,
    head: int,
    rewind_blocks: int,
    confirmations: int,
    block_window: int,
    override: int | None = None,
) -> PassWindow:
    fb = start_block(last_processed, rewind_blocks, override)
    tb = safe_head(head, confirmations)
    requested = BlockRange(fb, tb)
    if requested.is_empty():
        return PassWindow(requested, requested)
    return PassWindow(requested, BlockRange(fb, capped_end(fb, block_window, tb)))


def backoff_start_index(windows: tuple[int, ...], initial_window: int) -> int:
    """Index of the first window not larger than initial_window (the smallest if none)."""
    for i, w in enumerate(windows):
        if w <= initial_window:
            return i
    return len(windows) - 1

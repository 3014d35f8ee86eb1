import asyncio
import secrets
import time
from datetime import datetime, timezone
from typing import Awaitable, TypeVar

from ..domain.errors import PassTimeout

T = TypeVar("T")


def new_trace_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def with_budget(aw: Awaitable[T], budget_s: float | None, what: str) -> T:
    """Await `aw` within a wall-clock budget; PassTimeout when exceeded."""
    if not budget_s:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=budget_s)
    except asyncio.TimeoutError as e:
        raise PassTimeout(f"{what} exceeded {budget_s:.0f}s budget") from e

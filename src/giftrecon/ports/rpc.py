# giftrecon/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0


class RPCClient(Protocol):
    """Chain access needed by a reconciliation pass: head height and filtered logs."""

    async def latest_block(self) -> int:
        """Current chain head, unconfirmed."""

    async def get_logs(
        self,
        address: Address,
        topic0s: Sequence[Topic0],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Logs emitted by `address` matching any of `topic0s` in [from_block, to_block].

        Raises RPCError (or a transport error) when the provider refuses the call.
        """


class ErrorClassifier(Protocol):
    """Decides whether a provider error means "block range too large"."""

    def is_range_error(self, exc: BaseException) -> bool:
        """True when narrowing the block range may make the request succeed."""

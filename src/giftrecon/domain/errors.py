from __future__ import annotations


class GiftReconError(Exception):
    """Base class for every error raised by giftrecon."""


class RPCError(GiftReconError):
    """JSON-RPC provider returned an error object (or an unusable response)."""

    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"RPC error code={code} message={message}")
        self.code = code
        self.message = message


class EventDecodeError(GiftReconError):
    """A chain log or stream entry could not be turned into a canonical event."""


class StoreWriteError(GiftReconError):
    """A store write failed; the event is not recorded and may be retried."""


class PassTimeout(GiftReconError):
    """A reconciliation or materialization pass ran past its wall-clock budget."""

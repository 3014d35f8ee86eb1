from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, EIP-55 checksum
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
EventId = NewType("EventId", str)   # "<txhash>:<logIndex>"
EventKind = Literal["GiftCreated", "GiftViewed", "GiftClaimed", "GiftExpired", "GiftReturned"]
Source = Literal["reconciliation", "realtime", "manual"]
FetchStatus = Literal["ok", "abandoned", "failed"]
WatermarkPolicy = Literal["strict", "lenient"]

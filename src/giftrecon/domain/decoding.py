from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from eth_utils import keccak, to_checksum_address

from .errors import EventDecodeError
from .models import (
    EventLog, EventSpec, GiftClaimed, GiftCreated, GiftExpired, GiftPayload,
    GiftReturned, GiftViewed, PAYLOAD_TYPES,
)
from .value_types import Address, EventKind, Topic0


def topic0_of(signature: str) -> Topic0:
    """keccak256 of the canonical event signature, 0x-prefixed."""
    return Topic0("0x" + keccak(text=signature).hex())


# Canonical signatures of the escrow contract events (indexed args live in topics)
GIFT_CREATED_SIG  = "GiftCreated(uint256,uint256,address,uint256,uint256)"
GIFT_CLAIMED_SIG  = "GiftClaimed(uint256,address,uint256)"
GIFT_EXPIRED_SIG  = "GiftExpired(uint256,uint256)"
GIFT_RETURNED_SIG = "GiftReturned(uint256,address,uint256,uint256)"

# Fetch order matters for nothing downstream; kept stable for log readability
ESCROW_EVENTS: tuple[EventSpec, ...] = (
    EventSpec("GiftCreated",  GIFT_CREATED_SIG,  topic0_of(GIFT_CREATED_SIG)),
    EventSpec("GiftClaimed",  GIFT_CLAIMED_SIG,  topic0_of(GIFT_CLAIMED_SIG)),
    EventSpec("GiftExpired",  GIFT_EXPIRED_SIG,  topic0_of(GIFT_EXPIRED_SIG)),
    EventSpec("GiftReturned", GIFT_RETURNED_SIG, topic0_of(GIFT_RETURNED_SIG)),
)

_KIND_BY_T0: dict[str, EventKind] = {s.topic0: s.kind for s in ESCROW_EVENTS}


# --------- 32B word slicing (no eth_abi) --------------------------------------
def _hexstr_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def _topic_u256(t: str) -> int:
    return int(t, 16)

def _topic_addr(t: str) -> Address:
    h = t[2:] if t[:2].lower() == "0x" else t
    return Address(to_checksum_address("0x" + h[-40:]))


def derive_campaign_id(args: Mapping[str, Any]) -> str:
    """Explicit campaignId, else creator prefix, else gift id, else 'default'."""
    if args.get("campaignId"):
        return str(args["campaignId"])
    creator = args.get("creator")
    if creator:
        return f"campaign_{str(creator)[:10]}"
    gift_id = args.get("giftId")
    if gift_id is not None and gift_id != "":
        return f"campaign_gift_{gift_id}"
    return "default"


def decode_log(log: EventLog) -> GiftPayload:
    """Decode one escrow log into its typed payload.

    Raises EventDecodeError on an unknown topic0 or a short topics/data layout.
    """
    if not log.topics:
        raise EventDecodeError(f"log {log.tx_hash}:{log.log_index} has no topics")
    kind = _KIND_BY_T0.get(log.topics[0].lower())
    if kind is None:
        raise EventDecodeError(f"unknown topic0 {log.topics[0]}")
    top = log.topics
    data = _hexstr_to_bytes(log.data_hex)

    # GiftCreated: topics [t0, giftId, creator]; data [tokenId, amount, expiresAt]
    if kind == "GiftCreated" and len(top) >= 3 and len(data) >= 32 * 3:
        args: dict[str, Any] = {
            "giftId": _topic_u256(top[1]),
            "creator": _topic_addr(top[2]),
            "tokenId": _u256(_word(data, 0)),
            "amount": _u256(_word(data, 1)),
            "expiresAt": _u256(_word(data, 2)),
        }
    # GiftClaimed: topics [t0, giftId, claimer]; data [tokenId]
    elif kind == "GiftClaimed" and len(top) >= 3 and len(data) >= 32:
        args = {
            "giftId": _topic_u256(top[1]),
            "claimer": _topic_addr(top[2]),
            "tokenId": _u256(_word(data, 0)),
        }
    # GiftExpired: topics [t0, giftId]; data [tokenId]
    elif kind == "GiftExpired" and len(top) >= 2 and len(data) >= 32:
        args = {"giftId": _topic_u256(top[1]), "tokenId": _u256(_word(data, 0))}
    # GiftReturned: topics [t0, giftId, creator]; data [tokenId, amount]
    elif kind == "GiftReturned" and len(top) >= 3 and len(data) >= 32 * 2:
        args = {
            "giftId": _topic_u256(top[1]),
            "creator": _topic_addr(top[2]),
            "tokenId": _u256(_word(data, 0)),
            "amount": _u256(_word(data, 1)),
        }
    else:
        raise EventDecodeError(
            f"{kind} log {log.tx_hash}:{log.log_index} too short "
            f"(topics={len(top)}, data={len(data)}B)"
        )
    return payload_from_args(kind, args)


def _as_int(v: Any, key: str) -> int:
    if v is None or v == "":
        raise EventDecodeError(f"missing {key}")
    if isinstance(v, int):
        return v
    s = str(v).strip().lower()
    try:
        return int(s, 16) if s.startswith("0x") else int(s)
    except ValueError as e:
        raise EventDecodeError(f"bad {key}: {v!r}") from e

def _as_addr(v: Any, key: str) -> Address:
    if not v:
        raise EventDecodeError(f"missing {key}")
    try:
        return Address(to_checksum_address(str(v)))
    except ValueError as e:
        raise EventDecodeError(f"bad {key}: {v!r}") from e


def payload_from_args(kind: EventKind, args: Mapping[str, Any]) -> GiftPayload:
    """Build a typed payload from loosely-typed decoded args (camelCase keys)."""
    if kind not in PAYLOAD_TYPES:
        raise EventDecodeError(f"unknown event type {kind!r}")
    norm = dict(args)
    for key in ("creator", "claimer", "viewer"):
        if norm.get(key):
            norm[key] = _as_addr(norm[key], key)
    gift_id = _as_int(norm.get("giftId"), "giftId")
    token_id = _as_int(norm.get("tokenId", 0), "tokenId")
    campaign = derive_campaign_id(norm)

    if kind == "GiftCreated":
        return GiftCreated(gift_id, token_id, _as_addr(norm.get("creator"), "creator"),
                           _as_int(norm.get("amount"), "amount"),
                           _as_int(norm.get("expiresAt", 0), "expiresAt"), campaign)
    if kind == "GiftClaimed":
        return GiftClaimed(gift_id, token_id, _as_addr(norm.get("claimer"), "claimer"), campaign)
    if kind == "GiftExpired":
        return GiftExpired(gift_id, token_id, campaign)
    if kind == "GiftReturned":
        return GiftReturned(gift_id, token_id, _as_addr(norm.get("creator"), "creator"),
                            _as_int(norm.get("amount"), "amount"), campaign)
    return GiftViewed(gift_id, token_id, norm.get("viewer") or None, campaign)


@dataclass(slots=True, frozen=True)
class BlockClock:
    """Estimates block timestamps from block numbers on a fixed-cadence chain."""
    genesis_timestamp: int = 1695768288   # Base Sepolia
    block_time_s: float = 2.0

    def estimate(self, block_number: int) -> int:
        return self.genesis_timestamp + int(block_number * self.block_time_s)

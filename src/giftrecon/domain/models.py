from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Union

from .errors import EventDecodeError
from .value_types import Address, EventId, EventKind, FetchStatus, Source, Topic0


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1
    def is_empty(self) -> bool: return self.start > self.end


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as fetched from RPC, minimally normalized."""
    address: str                       # lowercased hex with 0x
    topics: tuple[str, ...]            # all topics, lowercased with 0x
    data_hex: str                      # hex with 0x (or "0x")
    block_number: int
    tx_hash: str                       # lowercased hex with 0x
    log_index: int
    block_timestamp: int | None = None


# ──────────────────────────────
# Payloads (one variant per event kind)
# ──────────────────────────────

def _int_field(data: Mapping[str, Any], key: str) -> int:
    raw = data.get(key)
    if raw is None or raw == "":
        raise EventDecodeError(f"missing integer field {key!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"bad integer field {key!r}: {raw!r}") from e


def _addr_field(data: Mapping[str, Any], key: str) -> Address | None:
    raw = data.get(key)
    return Address(str(raw)) if raw else None


@dataclass(slots=True, frozen=True)
class GiftCreated:
    kind: ClassVar[EventKind] = "GiftCreated"
    gift_id: int
    token_id: int
    creator: Address
    amount: int                        # smallest on-chain unit
    expires_at: int
    campaign_id: str

    def data(self) -> dict[str, str]:
        return {"creator": self.creator, "amount": str(self.amount), "expiresAt": str(self.expires_at)}

    @classmethod
    def from_data(cls, gift_id: int, token_id: int, campaign_id: str, data: Mapping[str, Any]) -> GiftCreated:
        creator = _addr_field(data, "creator")
        if creator is None:
            raise EventDecodeError("GiftCreated without creator")
        return cls(gift_id, token_id, creator, _int_field(data, "amount"),
                   int(data.get("expiresAt") or 0), campaign_id)


@dataclass(slots=True, frozen=True)
class GiftClaimed:
    kind: ClassVar[EventKind] = "GiftClaimed"
    gift_id: int
    token_id: int
    claimer: Address
    campaign_id: str

    def data(self) -> dict[str, str]:
        return {"claimer": self.claimer}

    @classmethod
    def from_data(cls, gift_id: int, token_id: int, campaign_id: str, data: Mapping[str, Any]) -> GiftClaimed:
        claimer = _addr_field(data, "claimer")
        if claimer is None:
            raise EventDecodeError("GiftClaimed without claimer")
        return cls(gift_id, token_id, claimer, campaign_id)


@dataclass(slots=True, frozen=True)
class GiftExpired:
    kind: ClassVar[EventKind] = "GiftExpired"
    gift_id: int
    token_id: int
    campaign_id: str

    def data(self) -> dict[str, str]:
        return {}

    @classmethod
    def from_data(cls, gift_id: int, token_id: int, campaign_id: str, data: Mapping[str, Any]) -> GiftExpired:
        return cls(gift_id, token_id, campaign_id)


@dataclass(slots=True, frozen=True)
class GiftReturned:
    kind: ClassVar[EventKind] = "GiftReturned"
    gift_id: int
    token_id: int
    creator: Address
    amount: int
    campaign_id: str

    def data(self) -> dict[str, str]:
        return {"creator": self.creator, "amount": str(self.amount)}

    @classmethod
    def from_data(cls, gift_id: int, token_id: int, campaign_id: str, data: Mapping[str, Any]) -> GiftReturned:
        creator = _addr_field(data, "creator")
        if creator is None:
            raise EventDecodeError("GiftReturned without creator")
        return cls(gift_id, token_id, creator, _int_field(data, "amount"), campaign_id)


@dataclass(slots=True, frozen=True)
class GiftViewed:
    kind: ClassVar[EventKind] = "GiftViewed"
    gift_id: int
    token_id: int
    viewer: Address | None
    campaign_id: str

    def data(self) -> dict[str, str]:
        return {"viewer": self.viewer} if self.viewer else {}

    @classmethod
    def from_data(cls, gift_id: int, token_id: int, campaign_id: str, data: Mapping[str, Any]) -> GiftViewed:
        return cls(gift_id, token_id, _addr_field(data, "viewer"), campaign_id)


GiftPayload = Union[GiftCreated, GiftClaimed, GiftExpired, GiftReturned, GiftViewed]

PAYLOAD_TYPES: dict[EventKind, type[GiftPayload]] = {
    "GiftCreated": GiftCreated,
    "GiftClaimed": GiftClaimed,
    "GiftExpired": GiftExpired,
    "GiftReturned": GiftReturned,
    "GiftViewed": GiftViewed,
}


# ──────────────────────────────
# Canonical event (stream record)
# ──────────────────────────────

def canonical_event_id(tx_hash: str, log_index: int | str) -> EventId:
    return EventId(f"{tx_hash.lower()}:{log_index}")


@dataclass(slots=True, frozen=True)
class CanonicalEvent:
    event_id: EventId
    payload: GiftPayload
    block_number: int
    block_timestamp: int               # unix seconds
    tx_hash: str
    log_index: int
    source: Source
    processed_at: int                  # unix millis

    @property
    def event_type(self) -> EventKind:
        return self.payload.kind

    def to_stream_fields(self) -> dict[str, str]:
        """Flat string mapping for XADD; empty values are dropped."""
        p = self.payload
        fields = {
            "eventId": self.event_id,
            "type": p.kind,
            "giftId": str(p.gift_id),
            "tokenId": str(p.token_id),
            "campaignId": p.campaign_id,
            "blockNumber": str(self.block_number),
            "blockTimestamp": str(self.block_timestamp),
            "transactionHash": self.tx_hash,
            "logIndex": str(self.log_index),
            "data": json.dumps(p.data(), separators=(",", ":"), sort_keys=True),
            "processedAt": str(self.processed_at),
            "source": self.source,
        }
        return {k: v for k, v in fields.items() if v}

    @classmethod
    def from_stream_fields(cls, fields: Mapping[str, str]) -> CanonicalEvent:
        kind = fields.get("type")
        ptype = PAYLOAD_TYPES.get(kind)  # type: ignore[arg-type]
        if ptype is None:
            raise EventDecodeError(f"unknown event type {kind!r}")
        try:
            data = json.loads(fields.get("data") or "{}")
        except json.JSONDecodeError as e:
            raise EventDecodeError(f"malformed data for {fields.get('eventId')}: {e}") from e
        if not isinstance(data, dict):
            raise EventDecodeError(f"data for {fields.get('eventId')} is not an object")
        try:
            payload = ptype.from_data(
                _int_field(fields, "giftId"),
                int(fields.get("tokenId") or 0),
                fields.get("campaignId") or "default",
                data,
            )
            tx_hash = fields.get("transactionHash") or ""
            log_index = int(fields.get("logIndex") or 0)
            return cls(
                event_id=EventId(fields.get("eventId") or canonical_event_id(tx_hash, log_index)),
                payload=payload,
                block_number=int(fields.get("blockNumber") or 0),
                block_timestamp=_int_field(fields, "blockTimestamp"),
                tx_hash=tx_hash,
                log_index=log_index,
                source=fields.get("source", "reconciliation"),  # type: ignore[arg-type]
                processed_at=int(fields.get("processedAt") or 0),
            )
        except (TypeError, ValueError) as e:
            raise EventDecodeError(f"bad stream entry {fields.get('eventId')}: {e}") from e


# ──────────────────────────────
# Pass results
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class EventSpec:
    """One fetchable event kind: its topic0 on the escrow contract."""
    kind: EventKind
    signature: str
    topic0: Topic0


@dataclass(slots=True)
class FetchOutcome:
    kind: EventKind
    status: FetchStatus
    logs: list[EventLog] = field(default_factory=list)
    covered_to: int | None = None      # last block actually scanned (ok only)
    attempts: int = 0
    error: str | None = None


@dataclass(slots=True)
class ReconcileResult:
    from_block: int
    to_block: int
    events_processed: int = 0
    duplicates_skipped: int = 0
    decode_errors: int = 0
    write_errors: int = 0
    failed_event_types: list[str] = field(default_factory=list)
    has_more: bool = False
    next_block: int = 0
    watermark: int = 0
    no_new_blocks: bool = False
    processing_time_ms: int = 0
    trace_id: str = ""

    def to_response(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": True,
            "fromBlock": str(self.from_block),
            "toBlock": str(self.to_block),
            "eventsProcessed": self.events_processed,
        }
        if self.no_new_blocks:
            out["message"] = "No new blocks to process"
            return out
        out.update({
            "duplicatesSkipped": self.duplicates_skipped,
            "decodeErrors": self.decode_errors,
            "writeErrors": self.write_errors,
            "failedEventTypes": list(self.failed_event_types),
            "processingTimeMs": self.processing_time_ms,
            "nextBlock": str(self.next_block),
            "hasMore": self.has_more,
            "traceId": self.trace_id,
        })
        return out


@dataclass(slots=True)
class MaterializeResult:
    events_processed: int = 0
    skipped: int = 0
    hourly: int = 0
    daily: int = 0
    campaigns: int = 0
    processing_time_ms: int = 0
    trace_id: str = ""

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "eventsProcessed": self.events_processed,
            "skipped": self.skipped,
            "rollups": {"hourly": self.hourly, "daily": self.daily, "campaigns": self.campaigns},
            "processingTimeMs": self.processing_time_ms,
            "traceId": self.trace_id,
        }

"""Roll-up buckets computed from canonical events.

A bucket is recomputed from source events on every materialization pass and
written as a flat string hash; nothing here reads previous roll-ups.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from .models import CanonicalEvent, GiftClaimed, GiftCreated, GiftReturned
from .value_types import EventKind

_CENT = Decimal("0.01")

# counter field per event kind: "GiftCreated" -> "created"
COUNTER_FIELDS: dict[EventKind, str] = {
    "GiftCreated": "created",
    "GiftViewed": "viewed",
    "GiftClaimed": "claimed",
    "GiftExpired": "expired",
    "GiftReturned": "returned",
}


def hour_bucket(ts: int) -> str:
    """'YYYY-MM-DDTHH' (UTC) for a unix-seconds timestamp."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H")

def day_bucket(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def to_display_units(amount: int, decimals: int) -> Decimal:
    """Exact conversion from the smallest on-chain unit to display units."""
    return Decimal(amount).scaleb(-decimals)


@dataclass(slots=True)
class RollupStats:
    counts: dict[str, int] = field(default_factory=lambda: {f: 0 for f in COUNTER_FIELDS.values()})
    total_value: Decimal = Decimal(0)
    unique_users: set[str] = field(default_factory=set)
    unique_gifts: set[int] | None = None    # tracked for the global bucket only

    def add(self, ev: CanonicalEvent, decimals: int) -> None:
        p = ev.payload
        self.counts[COUNTER_FIELDS[p.kind]] += 1
        # created and returned amounts both count
        if isinstance(p, (GiftCreated, GiftReturned)):
            self.total_value += to_display_units(p.amount, decimals)
        elif isinstance(p, GiftClaimed):
            self.unique_users.add(p.claimer.lower())
        if self.unique_gifts is not None:
            self.unique_gifts.add(p.gift_id)

    def conversion_rate(self) -> Decimal:
        created = self.counts["created"]
        if created == 0:
            return Decimal(0)
        return Decimal(self.counts["claimed"]) * 100 / Decimal(created)

    def to_hash(self) -> dict[str, str]:
        out = {name: str(n) for name, n in self.counts.items()}
        out["totalValue"] = str(self.total_value.quantize(_CENT))
        out["uniqueUsers"] = str(len(self.unique_users))
        out["conversionRate"] = str(self.conversion_rate().quantize(_CENT))
        if self.unique_gifts is not None:
            out["uniqueGifts"] = str(len(self.unique_gifts))
        return out


@dataclass(slots=True)
class RollupSet:
    hourly: dict[str, RollupStats] = field(default_factory=dict)
    daily: dict[str, RollupStats] = field(default_factory=dict)
    campaigns: dict[str, RollupStats] = field(default_factory=dict)
    global_: RollupStats = field(default_factory=lambda: RollupStats(unique_gifts=set()))

    def add(self, ev: CanonicalEvent, decimals: int) -> None:
        ts = ev.block_timestamp
        self.hourly.setdefault(hour_bucket(ts), RollupStats()).add(ev, decimals)
        self.daily.setdefault(day_bucket(ts), RollupStats()).add(ev, decimals)
        if ev.payload.campaign_id:
            self.campaigns.setdefault(ev.payload.campaign_id, RollupStats()).add(ev, decimals)
        self.global_.add(ev, decimals)

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from ..domain.decoding import payload_from_args
from ..domain.models import PAYLOAD_TYPES, CanonicalEvent, GiftPayload, canonical_event_id
from ..domain.value_types import EventKind, Source
from ..ports.storage import EventStore

logger = logging.getLogger(__name__)

DEFAULT_GUARD_TTL_S = 14 * 86_400


def normalize_kind(event_type: str) -> EventKind:
    """Accept both 'GiftCreated' and the short 'Created' spelling."""
    kind = event_type if event_type.startswith("Gift") else f"Gift{event_type}"
    if kind not in PAYLOAD_TYPES:
        raise ValueError(f"unknown event type {event_type!r}")
    return kind  # type: ignore[return-value]


class CanonicalEventProcessor:
    """Turns one observed chain log into at most one stream record.

    The idempotency key is ``txhash:logIndex``; the guard TTL has to outlive
    the rewind window plus the reconciliation interval.
    """

    def __init__(self, store: EventStore, *, guard_ttl_s: int = DEFAULT_GUARD_TTL_S) -> None:
        self.store = store
        self.guard_ttl_s = guard_ttl_s

    async def process(
        self,
        event_type: str,
        tx_hash: str,
        log_index: int,
        block_number: int,
        block_timestamp: int,
        payload: GiftPayload | Mapping[str, Any],
        source: Source = "reconciliation",
    ) -> bool:
        """Record the event; True if newly recorded, False if already seen.

        Raises StoreWriteError when the store fails; nothing is recorded then.
        """
        kind = normalize_kind(event_type)
        if isinstance(payload, Mapping):
            payload = payload_from_args(kind, payload)
        elif payload.kind != kind:
            raise ValueError(f"payload {payload.kind} does not match event type {kind}")

        event = CanonicalEvent(
            event_id=canonical_event_id(tx_hash, log_index),
            payload=payload,
            block_number=int(block_number),
            block_timestamp=int(block_timestamp),
            tx_hash=tx_hash.lower(),
            log_index=int(log_index),
            source=source,
            processed_at=int(time.time() * 1000),
        )
        stream_id = await self.store.record_event(event.event_id, event.to_stream_fields(), self.guard_ttl_s)
        if stream_id is None:
            logger.debug("event already processed, skipping %s", event.event_id)
            return False
        logger.debug("event added to stream id=%s event=%s type=%s", stream_id, event.event_id, kind)
        return True

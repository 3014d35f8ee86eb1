from __future__ import annotations
import os, logging
import pyarrow as pa, pyarrow.parquet as pq
from typing import Sequence

from ..ports.storage import EventStore, StreamEntry

logger = logging.getLogger(__name__)

# big ints (gift ids, amounts inside data) stay strings
ARCHIVE_SCHEMA = pa.schema([
    ("stream_id",        pa.string()),
    ("event_id",         pa.string()),
    ("type",             pa.string()),
    ("gift_id",          pa.large_string()),
    ("token_id",         pa.large_string()),
    ("campaign_id",      pa.string()),
    ("block_number",     pa.int64()),
    ("block_timestamp",  pa.int64()),
    ("transaction_hash", pa.string()),
    ("log_index",        pa.int64()),
    ("data",             pa.large_string()),
    ("processed_at",     pa.int64()),
    ("source",           pa.string()),
])

def _opt_int(v: str | None) -> int | None:
    try:
        return int(v) if v else None
    except ValueError:
        return None

def _entries_to_table(entries: Sequence[StreamEntry]) -> pa.Table:
    cols: dict[str, list] = {f.name: [] for f in ARCHIVE_SCHEMA}
    for sid, f in entries:
        cols["stream_id"].append(sid)
        cols["event_id"].append(f.get("eventId"))
        cols["type"].append(f.get("type"))
        cols["gift_id"].append(f.get("giftId"))
        cols["token_id"].append(f.get("tokenId"))
        cols["campaign_id"].append(f.get("campaignId"))
        cols["block_number"].append(_opt_int(f.get("blockNumber")))
        cols["block_timestamp"].append(_opt_int(f.get("blockTimestamp")))
        cols["transaction_hash"].append(f.get("transactionHash"))
        cols["log_index"].append(_opt_int(f.get("logIndex")))
        cols["data"].append(f.get("data"))
        cols["processed_at"].append(_opt_int(f.get("processedAt")))
        cols["source"].append(f.get("source"))
    arrays = {k: pa.array(v, type=ARCHIVE_SCHEMA.field(k).type) for k, v in cols.items()}
    return pa.Table.from_pydict(arrays, schema=ARCHIVE_SCHEMA).sort_by([
        ("block_number", "ascending"),
        ("transaction_hash", "ascending"),
        ("log_index", "ascending"),
    ])

def _next_id(stream_id: str) -> str:
    ms, _, seq = stream_id.partition("-")
    return f"{ms}-{int(seq or 0) + 1}"


class ParquetStreamArchive:
    """Writes the canonical event stream to numbered Parquet files, one per page."""

    def __init__(self, out_dir: str, codec: str = "zstd") -> None:
        self.out_dir = out_dir
        self.codec = codec
        os.makedirs(self.out_dir, exist_ok=True)

    def write_page(self, entries: Sequence[StreamEntry], page_idx: int) -> str:
        path = os.path.join(self.out_dir, f"events_{page_idx:05d}.parquet")
        tmp = path + ".tmp"
        pq.write_table(_entries_to_table(entries), tmp, compression=self.codec)
        os.replace(tmp, path)
        return path


async def export_stream_to_parquet(store: EventStore, out_dir: str, *, batch: int = 1_000) -> list[str]:
    """Page through the whole stream (oldest first) and archive it. Returns written paths."""
    archive = ParquetStreamArchive(out_dir)
    written: list[str] = []
    start = "-"
    while True:
        entries = await store.read_events(start, "+", count=batch)
        if not entries:
            break
        path = archive.write_page(entries, len(written) + 1)
        written.append(path)
        logger.info("wrote %s (rows=%d)", path, len(entries))
        if len(entries) < batch:
            break
        start = _next_id(entries[-1][0])
    return written

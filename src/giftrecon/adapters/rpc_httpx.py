from __future__ import annotations
import asyncio, httpx
from typing import Any, Sequence
from ..domain.errors import RPCError
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0
from ..ports.rpc import RPCClient

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66
def _normalize_topic0_list(t0s: Sequence[Topic0]) -> list[str]:
    return [str(t).strip().lower() for t in t0s]

def _build_topics_param(topic0s: Sequence[Topic0]) -> list[list[str]]:
    t0s = _normalize_topic0_list(topic0s)
    if not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

def _parse_qty(v: Any) -> int | None:
    if isinstance(v, int): return v
    if isinstance(v, str) and v: return int(v, 16) if v.startswith("0x") else int(v)
    return None

def _raise_rpc_error(data: dict) -> None:
    err = data["error"]
    if isinstance(err, dict):
        raise RPCError(err.get("code"), str(err.get("message")))
    raise RPCError(None, str(err))


class HttpxRPC(RPCClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: int = 20,
        max_conn: int = 16,
        *,
        client: httpx.AsyncClient | None = None,
        max_429_retries: int = 3,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_429_retries = max_429_retries
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
        )

    async def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc":"2.0","id":1,"method":method,"params":params}
        # retry on 429 with simple backoff, honouring Retry-After
        for attempt in range(self.max_429_retries):
            r = await self.client.post(self.rpc_url, json=payload)
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                await asyncio.sleep(delay); continue
            r.raise_for_status()
            data = r.json()
            if "error" in data:
                _raise_rpc_error(data)
            return data.get("result")
        raise RPCError(429, f"HTTP 429: retries exhausted for {method}")

    async def latest_block(self) -> int:
        result = await self._call("eth_blockNumber", [])
        return int(result, 16)

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[EventLog]:
        params = [{
            "address": str(address).lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _build_topics_param(topic0s),
        }]
        res = await self._call("eth_getLogs", params) or []
        typed: list[EventLog] = []
        for rl in res:
            topics = tuple((t if isinstance(t,str) else t.decode()).lower() for t in rl.get("topics", []))
            typed.append(EventLog(
                address=rl["address"].lower(),
                topics=topics,
                data_hex=str(rl.get("data") or "0x"),
                block_number=int(rl["blockNumber"], 16),
                tx_hash=(rl.get("transactionHash") or "").lower(),
                log_index=int(rl["logIndex"], 16),
                block_timestamp=_parse_qty(rl.get("blockTimestamp")),
            ))
        return typed

    async def aclose(self) -> None:
        await self.client.aclose()

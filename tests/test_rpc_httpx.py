"""HttpxRPC against httpx.MockTransport."""
import asyncio
import json

import httpx
import pytest

from giftrecon.adapters.rpc_httpx import HttpxRPC
from giftrecon.domain.errors import RPCError

from fakes import ESCROW, T0


def _rpc(handler, **kw) -> HttpxRPC:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxRPC("http://rpc.test", client=client, **kw)


def _call(rpc, coro_fn):
    async def body():
        try:
            return await coro_fn(rpc)
        finally:
            await rpc.aclose()
    return asyncio.run(body())


RAW_LOG = {
    "address": ESCROW,
    "topics": [T0["GiftExpired"], "0x" + "0" * 63 + "5"],
    "data": "0x" + "0" * 63 + "1",
    "blockNumber": "0x1f4",
    "transactionHash": "0x" + "AB" * 32,
    "logIndex": "0x2",
    "blockTimestamp": "0x65928ae0",
}


class TestHttpxRPC:
    def test_latest_block(self):
        def handler(request):
            assert json.loads(request.content)["method"] == "eth_blockNumber"
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x10"})
        assert _call(_rpc(handler), lambda r: r.latest_block()) == 16

    def test_get_logs_request_and_parse(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": [RAW_LOG]})

        logs = _call(_rpc(handler), lambda r: r.get_logs(ESCROW, [T0["GiftExpired"]], 100, 600))
        params = seen["params"][0]
        assert seen["method"] == "eth_getLogs"
        assert params["address"] == ESCROW.lower()
        assert (params["fromBlock"], params["toBlock"]) == ("0x64", "0x258")
        assert params["topics"] == [[T0["GiftExpired"]]]

        (log,) = logs
        assert log.block_number == 500
        assert log.log_index == 2
        assert log.tx_hash == "0x" + "ab" * 32
        assert log.address == ESCROW.lower()
        assert log.block_timestamp == 0x65928AE0

    def test_missing_block_timestamp(self):
        raw = {k: v for k, v in RAW_LOG.items() if k != "blockTimestamp"}
        rpc = _rpc(lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": [raw]}))
        (log,) = _call(rpc, lambda r: r.get_logs(ESCROW, [T0["GiftExpired"]], 0, 1))
        assert log.block_timestamp is None

    def test_invalid_topic_rejected(self):
        rpc = _rpc(lambda request: httpx.Response(200, json={"result": []}))
        with pytest.raises(ValueError):
            _call(rpc, lambda r: r.get_logs(ESCROW, ["0x1234"], 0, 1))

    def test_error_object(self):
        def handler(request):
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": 1,
                "error": {"code": -32005, "message": "query returned more than 10000 results"},
            })
        with pytest.raises(RPCError) as ei:
            _call(_rpc(handler), lambda r: r.get_logs(ESCROW, [T0["GiftExpired"]], 0, 100_000))
        assert ei.value.code == -32005
        assert "query returned more than" in str(ei.value)

    def test_rate_limit_retries(self, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(s):
            delays.append(s)

        monkeypatch.setattr("giftrecon.adapters.rpc_httpx.asyncio.sleep", fake_sleep)
        responses = iter([
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x2"}),
        ])
        assert _call(_rpc(lambda request: next(responses)), lambda r: r.latest_block()) == 2
        assert delays == [3.0]

    def test_rate_limit_exhausted(self, monkeypatch):
        async def fake_sleep(s):
            return None

        monkeypatch.setattr("giftrecon.adapters.rpc_httpx.asyncio.sleep", fake_sleep)
        rpc = _rpc(lambda request: httpx.Response(429), max_429_retries=2)
        with pytest.raises(RPCError) as ei:
            _call(rpc, lambda r: r.latest_block())
        assert ei.value.code == 429

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List

import pytest
import requests

from cellforge.config import Network, NodeConfig
from cellforge.rpc_client import JsonRpcGateway, RPCError, RPCTransportError, SearchKey
from cellforge.types import HASH_TYPE_TYPE, OutPoint, Script


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.url = "http://node"
        self.text = json.dumps(payload)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        return self._payload


class RecordingPost:
    def __init__(self, *responses: FakeResponse) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, "body": json.loads(kwargs["data"]), **kwargs})
        return self.responses.pop(0)


def _gateway() -> JsonRpcGateway:
    return JsonRpcGateway(
        NodeConfig(
            node_url="http://node:8114",
            indexer_url="http://indexer:8116",
            network=Network.CUSTOM,
            timeout=3.0,
        )
    )


def test_call_decodes_hex_results(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = _gateway()
    post = RecordingPost(FakeResponse({"jsonrpc": "2.0", "id": "1", "result": "0x2a"}))
    monkeypatch.setattr(gateway._session, "post", post)

    assert gateway.get_tip_block_number() == 42
    call = post.calls[0]
    assert call["url"] == "http://node:8114"
    assert call["body"]["method"] == "get_tip_block_number"
    assert call["timeout"] == 3.0
    assert gateway.network is Network.CUSTOM


def test_rpc_error_payload_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = _gateway()
    post = RecordingPost(
        FakeResponse({"jsonrpc": "2.0", "id": "1", "error": {"code": -301, "message": "PoolRejected"}})
    )
    monkeypatch.setattr(gateway._session, "post", post)

    with pytest.raises(RPCError) as excinfo:
        gateway.get_tip_block_number()

    assert excinfo.value.code == -301
    assert "PoolRejected" in str(excinfo.value)


def test_connection_failure_becomes_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = _gateway()

    def refuse(*_args: Any, **_kwargs: Any) -> FakeResponse:
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(gateway._session, "post", refuse)

    with pytest.raises(RPCTransportError, match="CELLFORGE_NODE_URL"):
        gateway.get_tip_block_number()


def test_http_error_keeps_status_code(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = _gateway()
    monkeypatch.setattr(gateway._session, "post", RecordingPost(FakeResponse({}, status_code=502)))

    with pytest.raises(RPCTransportError) as excinfo:
        gateway.get_tip_block_number()

    assert excinfo.value.status_code == 502


def test_get_cells_goes_to_indexer(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = _gateway()
    lock = Script(b"\x01" * 32, HASH_TYPE_TYPE, b"\x02" * 20)
    cell = {
        "out_point": OutPoint(b"\x03" * 32, 1).rpc(),
        "output": {"capacity": "0x174876e800", "lock": lock.rpc(), "type": None},
        "output_data": "0x",
        "block_number": "0x10",
        "tx_index": "0x0",
    }
    post = RecordingPost(
        FakeResponse({"jsonrpc": "2.0", "id": "1", "result": {"objects": [cell], "last_cursor": "0xab"}})
    )
    monkeypatch.setattr(gateway._session, "post", post)

    page = gateway.get_cells(SearchKey(lock), 10, None)

    assert post.calls[0]["url"] == "http://indexer:8116"
    assert post.calls[0]["body"]["params"][0]["script_search_mode"] == "exact"
    assert page.last_cursor == "0xab"
    assert page.objects[0].output.capacity == 1000 * 10**8
    assert page.objects[0].output.lock == lock
    assert page.objects[0].block_number == 16


def test_missing_live_cell_is_none(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = _gateway()
    post = RecordingPost(
        FakeResponse({"jsonrpc": "2.0", "id": "1", "result": {"cell": None, "status": "unknown"}})
    )
    monkeypatch.setattr(gateway._session, "post", post)

    assert gateway.get_live_cell(OutPoint(b"\x00" * 32, 0), True) is None


def test_search_key_rejects_unknown_modes() -> None:
    lock = Script(b"\x01" * 32, HASH_TYPE_TYPE)
    with pytest.raises(ValueError):
        SearchKey(lock, script_search_mode="partial")
    with pytest.raises(ValueError):
        SearchKey(lock, script_type="data")


def test_each_thread_gets_its_own_session() -> None:
    gateway = _gateway()
    main_session = gateway._session

    with ThreadPoolExecutor(max_workers=1) as pool:
        worker_session = pool.submit(lambda: gateway._session).result()

    assert gateway._session is main_session
    assert worker_session is not main_session

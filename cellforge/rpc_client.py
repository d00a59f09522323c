"""Chain gateway: node/indexer JSON-RPC client and cell search cursor.

:class:`ChainGateway` is the capability surface every operation talks to.
:class:`JsonRpcGateway` forwards each call to a node (and its cell indexer)
over JSON-RPC 2.0; :class:`cellforge.fake.FakeGateway` answers the same calls
from memory. :class:`CellCursor` walks the indexer's paginated ``get_cells``
results and can layer a client-side predicate on top of the search key.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

import requests
from requests import RequestException, Response

from .config import Network, NodeConfig, load_node_config
from .errors import ExternalRpcError
from .types import (
    CellOutput,
    Header,
    OutPoint,
    Script,
    Transaction,
    hex_decode,
    hex_encode,
    hex_int,
    int_decode,
)

logger = logging.getLogger(__name__)

SEARCH_MODES = ("exact", "prefix")
SCRIPT_TYPES = ("lock", "type")


class RPCError(ExternalRpcError):
    """Raised when the node responds with a JSON-RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(ExternalRpcError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class SearchFilter:
    """Secondary constraints of an indexer search key."""

    script: Script | None = None
    script_len_range: Tuple[int, int] | None = None
    output_data: bytes | None = None
    output_data_filter_mode: str = "exact"
    output_data_len_range: Tuple[int, int] | None = None

    def rpc(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.script is not None:
            payload["script"] = self.script.rpc()
        if self.script_len_range is not None:
            payload["script_len_range"] = [hex_int(v) for v in self.script_len_range]
        if self.output_data is not None:
            payload["output_data"] = hex_encode(self.output_data)
            payload["output_data_filter_mode"] = self.output_data_filter_mode
        if self.output_data_len_range is not None:
            payload["output_data_len_range"] = [hex_int(v) for v in self.output_data_len_range]
        return payload


@dataclass
class SearchKey:
    """Indexer query: a primary script plus optional filter."""

    script: Script
    script_type: str = "lock"
    script_search_mode: str = "exact"
    filter: SearchFilter | None = None
    with_data: bool = True

    def __post_init__(self) -> None:
        if self.script_type not in SCRIPT_TYPES:
            raise ValueError(f"script_type must be one of {SCRIPT_TYPES}")
        if self.script_search_mode not in SEARCH_MODES:
            raise ValueError(
                f"unsupported search mode {self.script_search_mode!r}; use exact or prefix"
            )

    def rpc(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "script": self.script.rpc(),
            "script_type": self.script_type,
            "script_search_mode": self.script_search_mode,
            "with_data": self.with_data,
        }
        if self.filter is not None:
            payload["filter"] = self.filter.rpc()
        return payload


@dataclass
class IndexerCell:
    out_point: OutPoint
    output: CellOutput
    output_data: bytes | None
    block_number: int = 0
    tx_index: int = 0

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "IndexerCell":
        raw_data = data.get("output_data")
        return cls(
            out_point=OutPoint.rpc_decode(data["out_point"]),
            output=CellOutput.rpc_decode(data["output"]),
            output_data=hex_decode(raw_data) if raw_data is not None else None,
            block_number=int_decode(data.get("block_number", "0x0")),
            tx_index=int_decode(data.get("tx_index", "0x0")),
        )

    def rpc(self) -> Dict[str, Any]:
        return {
            "out_point": self.out_point.rpc(),
            "output": self.output.rpc(),
            "output_data": hex_encode(self.output_data) if self.output_data is not None else None,
            "block_number": hex_int(self.block_number),
            "tx_index": hex_int(self.tx_index),
        }


@dataclass
class CellPage:
    objects: List[IndexerCell]
    last_cursor: str


@dataclass
class LiveCell:
    output: CellOutput
    data: bytes | None
    status: str = "live"


@dataclass
class Block:
    header: Header
    transactions: List[Transaction] = field(default_factory=list)

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "Block":
        return cls(
            header=Header.rpc_decode(data["header"]),
            transactions=[Transaction.rpc_decode(tx) for tx in data.get("transactions", [])],
        )


@dataclass
class TxPoolInfo:
    min_fee_rate: int
    tip_number: int = 0


@dataclass
class TransactionStatus:
    status: str
    block_hash: bytes | None = None
    block_number: int | None = None
    reason: str | None = None

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "TransactionStatus":
        block_hash = data.get("block_hash")
        block_number = data.get("block_number")
        return cls(
            status=data["status"],
            block_hash=hex_decode(block_hash) if block_hash else None,
            block_number=int_decode(block_number) if block_number is not None else None,
            reason=data.get("reason"),
        )


@dataclass
class TransactionWithStatus:
    transaction: Transaction | None
    tx_status: TransactionStatus


class ChainGateway:
    """Interface for querying chain state and submitting transactions."""

    network: Network = Network.TESTNET

    def get_live_cell(self, out_point: OutPoint, with_data: bool) -> LiveCell | None:
        raise NotImplementedError

    def get_cells(self, search_key: SearchKey, limit: int, cursor: str | None) -> CellPage:
        raise NotImplementedError

    def get_block_by_number(self, number: int) -> Block | None:
        raise NotImplementedError

    def get_block(self, block_hash: bytes) -> Block | None:
        raise NotImplementedError

    def get_header(self, block_hash: bytes) -> Header | None:
        raise NotImplementedError

    def get_header_by_number(self, number: int) -> Header | None:
        raise NotImplementedError

    def get_block_hash(self, number: int) -> bytes | None:
        raise NotImplementedError

    def get_tip_header(self) -> Header:
        raise NotImplementedError

    def get_tip_block_number(self) -> int:
        raise NotImplementedError

    def tx_pool_info(self) -> TxPoolInfo:
        raise NotImplementedError

    def get_transaction(self, tx_hash: bytes) -> TransactionWithStatus | None:
        raise NotImplementedError

    def send_transaction(self, tx: Transaction) -> bytes:
        raise NotImplementedError


CellPredicate = Callable[[IndexerCell], bool]


class CellCursor:
    """Iterate indexer search results page by page.

    The cursor is exhausted as soon as the indexer returns an empty page. An
    optional ``predicate`` drops cells the search key cannot exclude on the
    server side; pages whose cells are all dropped are skipped transparently.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        search_key: SearchKey,
        predicate: CellPredicate | None = None,
        page_size: int = 16,
    ) -> None:
        self.gateway = gateway
        self.search_key = search_key
        self.predicate = predicate
        self.page_size = page_size
        self.cursor: str | None = None
        self.exhausted = False
        self._buffer: Deque[IndexerCell] = deque()

    def next_batch(self, limit: int) -> Optional[List[IndexerCell]]:
        """Return up to ``limit`` matching cells, or ``None`` once exhausted."""

        if limit <= 0:
            raise ValueError("limit must be positive")
        if self._buffer:
            return [self._buffer.popleft() for _ in range(min(limit, len(self._buffer)))]
        while not self.exhausted:
            page = self.gateway.get_cells(self.search_key, limit, self.cursor)
            if not page.objects:
                self.exhausted = True
                break
            self.cursor = page.last_cursor
            matched = [cell for cell in page.objects if self._accept(cell)]
            if matched:
                return matched
            logger.debug("Skipped page of %d cells rejected by predicate", len(page.objects))
        return None

    def next(self) -> IndexerCell | None:
        if not self._buffer:
            batch = self.next_batch(self.page_size)
            if batch is None:
                return None
            self._buffer.extend(batch)
        return self._buffer.popleft()

    def __iter__(self) -> Iterator[IndexerCell]:
        while True:
            cell = self.next()
            if cell is None:
                return
            yield cell

    def _accept(self, cell: IndexerCell) -> bool:
        return self.predicate is None or self.predicate(cell)


class JsonRpcGateway(ChainGateway):
    """Thin JSON-RPC 2.0 client for a node and its built-in cell indexer.

    Each helper maps directly onto an RPC method and decodes the reply into
    the wire types of :mod:`cellforge.types`. Indexer calls (``get_cells``)
    go to ``config.indexer_url``; everything else goes to ``config.node_url``.
    """

    def __init__(self, config: NodeConfig) -> None:
        self.config = config
        self.network = config.network
        self._local = threading.local()

    @property
    def _session(self) -> requests.Session:
        # One Session per thread; rehydration calls the gateway from a pool.
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    @classmethod
    def from_env(cls) -> "JsonRpcGateway":
        """Instantiate a gateway using environment variables or config file."""

        return cls(load_node_config())

    def call(self, method: str, params: Optional[list[Any]] = None, *, indexer: bool = False) -> Any:
        """Perform a JSON-RPC request."""

        url = self.config.indexer_url if indexer else self.config.node_url
        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection to %s failed: %s",
                url,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                f"RPC connection to {url} failed. Ensure the node is reachable and "
                "CELLFORGE_NODE_URL (or ~/.cellforge.yaml) points to the right endpoint."
            ) from exc
        try:
            self._raise_for_status(response)
        except requests.HTTPError as exc:
            raise RPCTransportError(
                f"RPC server at {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            ) from exc
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if result.get("error"):
            error = result["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.error("RPC error body: %s", response.text)
        response.raise_for_status()

    # Node methods ---------------------------------------------------------

    def get_live_cell(self, out_point: OutPoint, with_data: bool) -> LiveCell | None:
        result = self.call("get_live_cell", [out_point.rpc(), with_data])
        cell = result.get("cell") if result else None
        if result is None or result.get("status") != "live" or cell is None:
            return None
        data = cell.get("data")
        return LiveCell(
            output=CellOutput.rpc_decode(cell["output"]),
            data=hex_decode(data["content"]) if data else None,
            status=result["status"],
        )

    def get_block_by_number(self, number: int) -> Block | None:
        result = self.call("get_block_by_number", [hex_int(number)])
        return Block.rpc_decode(result) if result else None

    def get_block(self, block_hash: bytes) -> Block | None:
        result = self.call("get_block", [hex_encode(block_hash)])
        return Block.rpc_decode(result) if result else None

    def get_header(self, block_hash: bytes) -> Header | None:
        result = self.call("get_header", [hex_encode(block_hash)])
        return Header.rpc_decode(result) if result else None

    def get_header_by_number(self, number: int) -> Header | None:
        result = self.call("get_header_by_number", [hex_int(number)])
        return Header.rpc_decode(result) if result else None

    def get_block_hash(self, number: int) -> bytes | None:
        result = self.call("get_block_hash", [hex_int(number)])
        return hex_decode(result) if result else None

    def get_tip_header(self) -> Header:
        return Header.rpc_decode(self.call("get_tip_header"))

    def get_tip_block_number(self) -> int:
        return int_decode(self.call("get_tip_block_number"))

    def tx_pool_info(self) -> TxPoolInfo:
        result = self.call("tx_pool_info")
        return TxPoolInfo(
            min_fee_rate=int_decode(result["min_fee_rate"]),
            tip_number=int_decode(result.get("tip_number", "0x0")),
        )

    def get_transaction(self, tx_hash: bytes) -> TransactionWithStatus | None:
        result = self.call("get_transaction", [hex_encode(tx_hash)])
        if not result:
            return None
        raw_tx = result.get("transaction")
        return TransactionWithStatus(
            transaction=Transaction.rpc_decode(raw_tx) if raw_tx else None,
            tx_status=TransactionStatus.rpc_decode(result["tx_status"]),
        )

    def send_transaction(self, tx: Transaction) -> bytes:
        result = self.call("send_transaction", [tx.rpc(), "passthrough"])
        tx_hash = hex_decode(result)
        logger.info("Submitted transaction %s", hex_encode(tx_hash))
        return tx_hash

    # Indexer methods ------------------------------------------------------

    def get_cells(self, search_key: SearchKey, limit: int, cursor: str | None) -> CellPage:
        result = self.call(
            "get_cells",
            [search_key.rpc(), "asc", hex_int(limit), cursor],
            indexer=True,
        )
        return CellPage(
            objects=[IndexerCell.rpc_decode(item) for item in result.get("objects", [])],
            last_cursor=result.get("last_cursor", ""),
        )

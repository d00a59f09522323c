"""In-memory chain gateway for tests and offline simulation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .cells import OutputCell
from .config import Network
from .rpc_client import (
    Block,
    CellPage,
    ChainGateway,
    IndexerCell,
    LiveCell,
    SearchFilter,
    SearchKey,
    TransactionStatus,
    TransactionWithStatus,
    TxPoolInfo,
)
from .types import Header, OutPoint, Script, Transaction, hex_decode, hex_encode

logger = logging.getLogger(__name__)

DEFAULT_FAKE_FEE_RATE = 1000


@dataclass
class FakeCell:
    out_point: OutPoint
    cell: OutputCell
    block_number: int = 0


def _script_len(script: Script | None) -> int:
    return 0 if script is None else 33 + len(script.args)


def _prefix_match(candidate: Script | None, pattern: Script | None) -> bool:
    if candidate is None or pattern is None:
        return False
    return (
        candidate.code_hash == pattern.code_hash
        and candidate.hash_type == pattern.hash_type
        and candidate.args.startswith(pattern.args)
    )


def _in_range(value: int, bounds: Tuple[int, int] | None) -> bool:
    return bounds is None or bounds[0] <= value < bounds[1]


class FakeGateway(ChainGateway):
    """Answer gateway calls from cells, headers and statuses inserted by hand.

    Cells are searched in insertion order; the pagination cursor is the
    little-endian offset of the next cell to examine. Inserting a cell with a
    header also records its creating transaction as committed in that block,
    so header deps can be derived from the cell's out-point.
    """

    def __init__(self, network: Network | str = Network.FAKE) -> None:
        self.network = Network(network)
        self.cells: List[FakeCell] = []
        self.headers: Dict[bytes, Header] = {}
        self.statuses: Dict[bytes, TransactionStatus] = {}
        self.transactions: Dict[bytes, Transaction] = {}
        self.blocks: Dict[int, Block] = {}
        self.fee_rate = DEFAULT_FAKE_FEE_RATE
        self.tip_number = 0
        self.tip_header: Header | None = None
        self.sent: List[Transaction] = []

    # Fixture setup --------------------------------------------------------

    def insert_cell(
        self, out_point: OutPoint, cell: OutputCell, header: Header | None = None
    ) -> "FakeGateway":
        if any(item.out_point == out_point for item in self.cells):
            return self
        block_number = 0
        if header is not None:
            block_number = header.number
            self.insert_header(header)
            self.insert_tx_status(out_point.tx_hash, header.hash(), header.number)
        self.cells.append(FakeCell(out_point, cell, block_number))
        return self

    def remove_cell(self, out_point: OutPoint) -> "FakeGateway":
        self.cells = [item for item in self.cells if item.out_point != out_point]
        return self

    def insert_header(self, header: Header) -> "FakeGateway":
        self.headers[header.hash()] = header
        return self

    def insert_tx_status(
        self,
        tx_hash: bytes,
        block_hash: bytes | None,
        block_number: int | None,
        status: str = "committed",
        reason: str | None = None,
    ) -> "FakeGateway":
        self.statuses[tx_hash] = TransactionStatus(status, block_hash, block_number, reason)
        return self

    def insert_block(self, number: int, block: Block) -> "FakeGateway":
        self.blocks[number] = block
        self.insert_header(block.header)
        return self

    def set_tip(self, number: int, header: Header | None = None) -> "FakeGateway":
        self.tip_number = number
        self.tip_header = header
        return self

    # Gateway surface ------------------------------------------------------

    def get_live_cell(self, out_point: OutPoint, with_data: bool) -> LiveCell | None:
        for item in self.cells:
            if item.out_point == out_point:
                return LiveCell(item.cell.output, item.cell.data if with_data else None)
        return None

    def get_cells(self, search_key: SearchKey, limit: int, cursor: str | None) -> CellPage:
        offset = int.from_bytes(hex_decode(cursor), "little") if cursor else 0
        objects: List[IndexerCell] = []
        while offset < len(self.cells) and len(objects) < limit:
            item = self.cells[offset]
            offset += 1
            if self._matches(search_key, item.cell):
                objects.append(
                    IndexerCell(
                        item.out_point,
                        item.cell.output,
                        item.cell.data if search_key.with_data else None,
                        block_number=item.block_number,
                    )
                )
        logger.debug("Fake get_cells matched %d cells up to offset %d", len(objects), offset)
        return CellPage(objects, hex_encode(offset.to_bytes(8, "little")))

    def _matches(self, search_key: SearchKey, cell: OutputCell) -> bool:
        if search_key.script_type == "lock":
            primary, secondary = cell.lock, cell.type
        else:
            primary, secondary = cell.type, cell.lock
        mode = search_key.script_search_mode
        if mode == "exact":
            if primary != search_key.script:
                return False
        elif mode == "prefix":
            if not _prefix_match(primary, search_key.script):
                return False
        else:
            raise ValueError(f"script search mode {mode!r} is not supported")
        search_filter = search_key.filter
        if search_filter is None:
            return True
        return self._filter_matches(search_filter, mode, secondary, cell.data)

    @staticmethod
    def _filter_matches(
        search_filter: SearchFilter, mode: str, secondary: Script | None, data: bytes
    ) -> bool:
        if search_filter.script is not None:
            if mode == "exact" and secondary != search_filter.script:
                return False
            if mode == "prefix" and not _prefix_match(secondary, search_filter.script):
                return False
        if not _in_range(_script_len(secondary), search_filter.script_len_range):
            return False
        if not _in_range(len(data), search_filter.output_data_len_range):
            return False
        if search_filter.output_data is not None:
            filter_mode = search_filter.output_data_filter_mode
            if filter_mode == "exact":
                return data == search_filter.output_data
            if filter_mode == "prefix":
                return data.startswith(search_filter.output_data)
            raise ValueError(f"output data filter mode {filter_mode!r} is not supported")
        return True

    def get_block_by_number(self, number: int) -> Block | None:
        return self.blocks.get(number)

    def get_block(self, block_hash: bytes) -> Block | None:
        for block in self.blocks.values():
            if block.header.hash() == block_hash:
                return block
        return None

    def get_header(self, block_hash: bytes) -> Header | None:
        return self.headers.get(block_hash)

    def get_header_by_number(self, number: int) -> Header | None:
        for header in self.headers.values():
            if header.number == number:
                return header
        return None

    def get_block_hash(self, number: int) -> bytes | None:
        header = self.get_header_by_number(number)
        return header.hash() if header is not None else None

    def get_tip_header(self) -> Header:
        if self.tip_header is not None:
            return self.tip_header
        header = self.get_header_by_number(self.tip_number)
        if header is None:
            raise LookupError(f"fake tip header {self.tip_number} was never inserted")
        return header

    def get_tip_block_number(self) -> int:
        return self.tip_number

    def tx_pool_info(self) -> TxPoolInfo:
        return TxPoolInfo(min_fee_rate=self.fee_rate, tip_number=self.tip_number)

    def get_transaction(self, tx_hash: bytes) -> TransactionWithStatus | None:
        status = self.statuses.get(tx_hash)
        if status is None:
            return None
        return TransactionWithStatus(self.transactions.get(tx_hash), status)

    def send_transaction(self, tx: Transaction) -> bytes:
        tx_hash = tx.hash()
        self.sent.append(tx)
        self.transactions[tx_hash] = tx
        self.insert_tx_status(tx_hash, None, None, status="pending")
        logger.info("Fake gateway accepted transaction %s", hex_encode(tx_hash))
        return tx_hash

    def sent_transaction(self, index: int = -1) -> Optional[Transaction]:
        return self.sent[index] if self.sent else None

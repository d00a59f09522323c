"""Skeleton cell records: wire primitives plus the data they do not carry.

The wire transaction only references inputs and dependencies by out-point;
these records keep the consumed output, its data and whether that data is
actually known, so capacity and script hashes can be computed locally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import NotFoundError
from .molecule import MoleculeError
from .rpc_client import ChainGateway, IndexerCell
from .types import (
    DEP_TYPE_CODE,
    CellDep,
    CellInput,
    CellOutput,
    Header,
    OutPoint,
    Script,
    WitnessArgs,
    blake2b_256,
    hex_encode,
)

logger = logging.getLogger(__name__)


@dataclass
class OutputCell:
    """A cell output together with its data."""

    output: CellOutput
    data: bytes = b""

    @classmethod
    def from_scripts(
        cls,
        lock: Script,
        type_script: Script | None = None,
        data: bytes = b"",
        capacity: int | None = None,
    ) -> "OutputCell":
        """Build an output; without ``capacity`` it holds exactly its occupied capacity."""

        output = CellOutput(0, lock, type_script)
        if capacity is None:
            capacity = output.occupied_capacity(data)
        return cls(output.with_capacity(capacity), bytes(data))

    @property
    def capacity(self) -> int:
        return self.output.capacity

    @capacity.setter
    def capacity(self, value: int) -> None:
        self.output = self.output.with_capacity(value)

    @property
    def lock(self) -> Script:
        return self.output.lock

    @property
    def type(self) -> Script | None:
        return self.output.type

    def occupied_capacity(self) -> int:
        return self.output.occupied_capacity(self.data)

    def lock_hash(self) -> bytes:
        return self.output.lock.hash()

    def type_hash(self) -> bytes | None:
        return self.output.type.hash() if self.output.type is not None else None

    def data_hash(self) -> bytes:
        return blake2b_256(self.data)


@dataclass
class InputCell:
    """A consumed cell; two inputs are equal when they spend the same out-point."""

    cell_input: CellInput
    output: OutputCell
    with_data: bool = True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InputCell):
            return NotImplemented
        return self.cell_input.previous_output == other.cell_input.previous_output

    @property
    def out_point(self) -> OutPoint:
        return self.cell_input.previous_output

    @property
    def since(self) -> int:
        return self.cell_input.since

    @since.setter
    def since(self, value: int) -> None:
        self.cell_input = CellInput(self.cell_input.previous_output, value)

    @classmethod
    def from_out_point(
        cls,
        gateway: ChainGateway,
        out_point: OutPoint,
        since: int | None = None,
        with_data: bool = True,
    ) -> "InputCell":
        live_cell = gateway.get_live_cell(out_point, with_data)
        if live_cell is None:
            raise NotFoundError(f"live cell not found at {out_point}")
        data = live_cell.data if with_data else None
        return cls(
            CellInput(out_point, since or 0),
            OutputCell(live_cell.output, data or b""),
            with_data=data is not None,
        )

    @classmethod
    def from_indexer_cell(cls, cell: IndexerCell, since: int | None = None) -> "InputCell":
        return cls(
            CellInput(cell.out_point, since or 0),
            OutputCell(cell.output, cell.output_data or b""),
            with_data=cell.output_data is not None,
        )

    @classmethod
    def from_dependency(cls, dep: "DependencyCell") -> "InputCell":
        return cls(
            CellInput(dep.cell_dep.out_point, 0),
            OutputCell(dep.output.output, dep.output.data),
            with_data=dep.with_data,
        )


@dataclass
class DependencyCell:
    """A named cell dependency; equality compares the serialized cell dep only."""

    name: str
    cell_dep: CellDep
    output: OutputCell
    with_data: bool = False

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyCell):
            return NotImplemented
        return self.cell_dep.molecule() == other.cell_dep.molecule()

    @classmethod
    def from_out_point(
        cls,
        gateway: ChainGateway,
        name: str,
        out_point: OutPoint,
        dep_type: int = DEP_TYPE_CODE,
        with_data: bool = False,
    ) -> "DependencyCell":
        live_cell = gateway.get_live_cell(out_point, with_data)
        if live_cell is None:
            raise NotFoundError(f"cell dep {name!r} not found at {out_point}")
        data = live_cell.data if with_data else None
        return cls(
            name,
            CellDep(out_point, dep_type),
            OutputCell(live_cell.output, data or b""),
            with_data=data is not None,
        )

    @classmethod
    def from_indexer_cell(
        cls, name: str, cell: IndexerCell, dep_type: int = DEP_TYPE_CODE
    ) -> "DependencyCell":
        return cls(
            name,
            CellDep(cell.out_point, dep_type),
            OutputCell(cell.output, cell.output_data or b""),
            with_data=cell.output_data is not None,
        )

    def refresh(self, gateway: ChainGateway) -> None:
        """Re-fetch the live cell behind this dependency, including its data."""

        fresh = DependencyCell.from_out_point(
            gateway, self.name, self.cell_dep.out_point, self.cell_dep.dep_type, with_data=True
        )
        self.output = fresh.output
        self.with_data = fresh.with_data


@dataclass
class HeaderDep:
    block_hash: bytes
    header: Header

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeaderDep):
            return NotImplemented
        return self.block_hash == other.block_hash

    @classmethod
    def from_block_hash(cls, gateway: ChainGateway, block_hash: bytes) -> "HeaderDep":
        header = gateway.get_header(block_hash)
        if header is None:
            raise NotFoundError(f"header not found for block {hex_encode(block_hash)}")
        return cls(block_hash, header)

    @classmethod
    def from_block_number(cls, gateway: ChainGateway, number: int) -> "HeaderDep":
        block_hash = gateway.get_block_hash(number)
        if block_hash is None:
            raise NotFoundError(f"block hash not found for block number {number}")
        return cls.from_block_hash(gateway, block_hash)

    @classmethod
    def from_out_point(cls, gateway: ChainGateway, out_point: OutPoint) -> "HeaderDep":
        """Header of the block that committed the transaction creating ``out_point``."""

        tx = gateway.get_transaction(out_point.tx_hash)
        if tx is None or tx.tx_status.block_hash is None:
            raise NotFoundError(f"no committed transaction for {out_point}")
        return cls.from_block_hash(gateway, tx.tx_status.block_hash)


@dataclass
class Witness:
    """A witness slot: traditional lock/input_type/output_type or plain bytes."""

    lock: bytes = b""
    input_type: bytes = b""
    output_type: bytes = b""
    plain: Optional[bytes] = field(default=None)
    # An all-absent WitnessArgs table read from the chain encodes as 16 bytes, not 0.
    keep_table: bool = False

    @classmethod
    def new_plain(cls, payload: bytes) -> "Witness":
        return cls(plain=bytes(payload))

    @property
    def is_plain(self) -> bool:
        return self.plain is not None

    def is_empty(self) -> bool:
        if self.plain is not None:
            return not self.plain
        return not (self.lock or self.input_type or self.output_type)

    def witness_args(self) -> WitnessArgs:
        return WitnessArgs(
            lock=self.lock or None,
            input_type=self.input_type or None,
            output_type=self.output_type or None,
        )

    def to_bytes(self) -> bytes:
        if self.plain is not None:
            return self.plain
        if self.is_empty() and not self.keep_table:
            return b""
        return self.witness_args().molecule()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Witness":
        if not raw:
            return cls()
        try:
            args = WitnessArgs.molecule_decode(raw)
        except MoleculeError:
            logger.debug("Witness of %d bytes is not WitnessArgs; keeping it plain", len(raw))
            return cls.new_plain(raw)
        witness = cls(args.lock or b"", args.input_type or b"", args.output_type or b"")
        witness.keep_table = witness.is_empty()
        if witness.to_bytes() != raw:
            # Present but empty fields cannot be re-encoded from this form.
            logger.debug("WitnessArgs with empty present fields; keeping it plain")
            return cls.new_plain(raw)
        return witness

"""General-purpose operations: dependencies, inputs, outputs, witnesses, balance and sign."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from ..cells import DependencyCell, HeaderDep, InputCell, OutputCell, Witness
from ..config import Network
from ..errors import CapacityTooSmallError, NetworkMismatchError, NotFoundError, SkeletonIndexError
from ..operation import Log, Operation
from ..rpc_client import CellCursor, ChainGateway, SearchFilter, SearchKey
from ..script_ref import ScriptRef
from ..signing import Secp256k1Key, sign_sighash_groups
from ..skeleton import ChangeReceiver, TransactionSkeleton
from ..types import (
    DEP_TYPE_CODE,
    DEP_TYPE_DEP_GROUP,
    TYPE_ID_CODE_HASH,
    CellDep,
    OutPoint,
    hex_decode,
    hex_encode,
)

logger = logging.getLogger(__name__)

SECP256K1_SIGHASH_ALL_NAME = "secp256k1_sighash_all"
SECP256K1_SIGHASH_ALL_DEP_GROUPS = {
    Network.MAINNET: hex_decode("0x71a7ba8fc96349fea0ed3a5c47992e3b4084b031a42264a018e0072e8172e46c"),
    Network.TESTNET: hex_decode("0xf8de3bb47d055cdf460d93a2a6e1b05f7432f9777c8c474abf4eec1d4aee5d37"),
}
DEFAULT_SEARCH_LIMIT = 16


def _add_found_inputs(
    gateway: ChainGateway,
    skeleton: TransactionSkeleton,
    search_key: SearchKey,
    count: int,
) -> int:
    """Add up to ``count`` searched cells not yet spent by ``skeleton``, each with a witness."""

    cursor = CellCursor(
        gateway,
        search_key,
        predicate=lambda cell: not any(item.out_point == cell.out_point for item in skeleton.inputs),
        page_size=min(count, DEFAULT_SEARCH_LIMIT),
    )
    added = 0
    for cell in cursor:
        skeleton.add_input(InputCell.from_indexer_cell(cell))
        skeleton.add_witness(Witness())
        added += 1
        if added >= count:
            break
    if added == 0:
        raise NotFoundError("input cell not found")
    logger.debug("Added %d searched input cells", added)
    return added


@dataclass
class AddCellDep(Operation):
    """Add a cell dep by out-point unless a dep with the same name already exists."""

    name: str
    tx_hash: bytes
    index: int
    dep_type: int = DEP_TYPE_CODE
    with_data: bool = False

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        if skeleton.get_dependency_by_name(self.name) is not None:
            return
        dep = DependencyCell.from_out_point(
            gateway,
            self.name,
            OutPoint(self.tx_hash, self.index),
            self.dep_type,
            with_data=self.with_data,
        )
        skeleton.add_dependency(dep)


@dataclass
class AddDeployedCellDep(Operation):
    """Add a well-known deployment, picking its transaction from the gateway's network.

    A dep already present under ``name`` is kept as is, which is how fake and
    custom networks provide their own deployment of the same contract.
    """

    name: str
    deployments: Mapping[Network, bytes]
    index: int
    dep_type: int = DEP_TYPE_CODE

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        if skeleton.get_dependency_by_name(self.name) is not None:
            return
        tx_hash = self.deployments.get(Network(gateway.network))
        if tx_hash is None:
            raise NetworkMismatchError(
                f"no known {self.name!r} deployment on {Network(gateway.network).value}; "
                f"add a cell dep named {self.name!r} first"
            )
        AddCellDep(self.name, tx_hash, self.index, self.dep_type).run(gateway, skeleton, log)


@dataclass
class AddCellDepByType(Operation):
    """Add the first live cell carrying ``type_script`` as a named cell dep."""

    name: str
    type_script: ScriptRef
    dep_type: int = DEP_TYPE_CODE
    with_data: bool = False

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        if skeleton.get_dependency_by_name(self.name) is not None:
            return
        search_key = SearchKey(
            self.type_script.to_script(skeleton),
            script_type="type",
            with_data=self.with_data,
        )
        cell = CellCursor(gateway, search_key).next()
        if cell is None:
            raise NotFoundError(f"cell dep {self.name!r} not found by type script")
        skeleton.add_dependency(DependencyCell.from_indexer_cell(self.name, cell, self.dep_type))


@dataclass
class AddSecp256k1SighashCellDep(Operation):
    """Add the default lock's dep group for the gateway's network.

    Mainnet and testnet use the well-known genesis dep group. A custom chain
    reads it from the second transaction of its genesis block. Fake networks
    have no such dep and fail.
    """

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        network = Network(gateway.network)
        if network == Network.FAKE:
            raise NetworkMismatchError("secp256k1_sighash_all is not available on the fake network")
        if network == Network.CUSTOM:
            skeleton.add_dependency(self._from_genesis(gateway))
            return
        dep = DependencyCell.from_out_point(
            gateway,
            SECP256K1_SIGHASH_ALL_NAME,
            OutPoint(SECP256K1_SIGHASH_ALL_DEP_GROUPS[network], 0),
            DEP_TYPE_DEP_GROUP,
        )
        skeleton.add_dependency(dep)

    @staticmethod
    def _from_genesis(gateway: ChainGateway) -> DependencyCell:
        genesis = gateway.get_block_by_number(0)
        if genesis is None or len(genesis.transactions) < 2:
            raise NotFoundError("genesis block has no dep group transaction")
        dep_group_tx = genesis.transactions[1]
        if not dep_group_tx.raw.outputs:
            raise NotFoundError("genesis dep group transaction has no outputs")
        out_point = OutPoint(dep_group_tx.hash(), 0)
        logger.debug("Using genesis dep group %s for secp256k1_sighash_all", out_point)
        return DependencyCell(
            SECP256K1_SIGHASH_ALL_NAME,
            CellDep(out_point, DEP_TYPE_DEP_GROUP),
            OutputCell(dep_group_tx.raw.outputs[0], b""),
            with_data=False,
        )


@dataclass
class AddHeaderDep(Operation):
    """Add a standalone header dep that is not tied to any input."""

    block_hash: bytes

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        skeleton.add_header_dependency(HeaderDep.from_block_hash(gateway, self.block_hash))


@dataclass
class AddHeaderDepByBlockNumber(Operation):
    block_number: int

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        skeleton.add_header_dependency(HeaderDep.from_block_number(gateway, self.block_number))


@dataclass
class AddHeaderDepByInputIndex(Operation):
    """Add the header of the block that created the input at ``input_index``."""

    input_index: int

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        cell_input = skeleton.input_at(self.input_index)
        skeleton.add_header_dependency(HeaderDep.from_out_point(gateway, cell_input.out_point))


@dataclass
class AddInputCell(Operation):
    """Add up to ``count`` live cells under ``lock_script``.

    Without ``type_script`` only plain capacity cells are searched: no type
    script and empty data. Every added input gets an empty witness.
    """

    lock_script: ScriptRef
    type_script: Optional[ScriptRef] = None
    count: int = 1
    search_mode: str = "exact"

    def search_key(self, skeleton: TransactionSkeleton) -> SearchKey:
        if self.type_script is not None:
            search_filter = SearchFilter(script=self.type_script.to_script(skeleton))
        else:
            search_filter = SearchFilter(script_len_range=(0, 1), output_data_len_range=(0, 1))
        return SearchKey(
            self.lock_script.to_script(skeleton),
            script_search_mode=self.search_mode,
            filter=search_filter,
        )

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        _add_found_inputs(gateway, skeleton, self.search_key(skeleton), self.count)


@dataclass
class AddInputCellByOutPoint(Operation):
    tx_hash: bytes
    index: int
    since: Optional[int] = None

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        cell_input = InputCell.from_out_point(
            gateway, OutPoint(self.tx_hash, self.index), self.since, with_data=True
        )
        skeleton.add_input(cell_input)
        skeleton.add_witness(Witness())


@dataclass
class AddInputCellByAddress(Operation):
    """Add one plain capacity cell owned by ``address``."""

    address: str

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        skeleton.add_input_from_address(gateway, self.address)
        skeleton.add_witness(Witness())


@dataclass
class AddInputCellByType(Operation):
    type_script: ScriptRef
    count: int = 1
    search_mode: str = "exact"

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        search_key = SearchKey(
            self.type_script.to_script(skeleton),
            script_type="type",
            script_search_mode=self.search_mode,
        )
        _add_found_inputs(gateway, skeleton, search_key, self.count)


@dataclass
class AddOutputCell(Operation):
    """Add an output whose capacity never falls below its occupied capacity.

    ``capacity`` is added on top of the occupied capacity unless
    ``absolute_capacity`` is set, in which case it is the exact declared
    capacity and must cover the occupied capacity. With ``type_id`` the
    output's unique id replaces the type script args; without a type script
    the standard type-id script is used.
    """

    lock_script: ScriptRef
    type_script: Optional[ScriptRef] = None
    capacity: int = 0
    data: bytes = b""
    absolute_capacity: bool = False
    type_id: bool = False

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        type_ref = self.type_script
        if self.type_id:
            unique_id = skeleton.derive_unique_id(len(skeleton.outputs))
            if type_ref is None:
                type_ref = ScriptRef.type(TYPE_ID_CODE_HASH, unique_id)
            else:
                type_ref = type_ref.with_args(unique_id)
        type_script = type_ref.to_script(skeleton) if type_ref is not None else None
        output = OutputCell.from_scripts(self.lock_script.to_script(skeleton), type_script, self.data)
        occupied = output.capacity
        if not self.absolute_capacity:
            output.capacity = occupied + self.capacity
        elif self.capacity >= occupied:
            output.capacity = self.capacity
        else:
            raise CapacityTooSmallError(self.capacity, occupied)
        skeleton.add_output(output)


@dataclass
class AddOutputCellByAddress(Operation):
    address: str
    data: bytes = b""
    type_id: bool = False

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        AddOutputCell(
            ScriptRef.from_address(self.address), data=self.data, type_id=self.type_id
        ).run(gateway, skeleton, log)


@dataclass
class AddOutputCellByInputIndex(Operation):
    """Copy the output consumed by an input, optionally overriding its parts.

    A negative ``input_index`` counts from the end. ``clear_type`` drops the
    type script; ``type_script`` replaces it. With ``adjust_capacity`` the
    copy holds exactly its occupied capacity.
    """

    input_index: int = -1
    data: Optional[bytes] = None
    lock_script: Optional[ScriptRef] = None
    type_script: Optional[ScriptRef] = None
    clear_type: bool = False
    adjust_capacity: bool = False

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        index = self.input_index
        if index < 0:
            index += len(skeleton.inputs)
        source = skeleton.input_at(index).output
        lock = self.lock_script.to_script(skeleton) if self.lock_script else source.lock
        if self.clear_type:
            type_script = None
        elif self.type_script is not None:
            type_script = self.type_script.to_script(skeleton)
        else:
            type_script = source.type
        data = source.data if self.data is None else bytes(self.data)
        capacity = None if self.adjust_capacity else source.capacity
        skeleton.add_output(OutputCell.from_scripts(lock, type_script, data, capacity))


@dataclass
class AddWitnessArgs(Operation):
    """Append a traditional witness, or overwrite the one at ``witness_index``."""

    witness_index: Optional[int] = None
    lock: bytes = b""
    input_type: bytes = b""
    output_type: bytes = b""

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        witness = Witness(bytes(self.lock), bytes(self.input_type), bytes(self.output_type))
        if self.witness_index is None:
            skeleton.add_witness(witness)
            return
        if not 0 <= self.witness_index < len(skeleton.witnesses):
            raise SkeletonIndexError(f"witness index {self.witness_index} out of range")
        skeleton.witnesses[self.witness_index] = witness


@dataclass
class AddSecp256k1SighashSignatures(Operation):
    """Sign every default-lock group owned by ``keys``."""

    keys: List[Secp256k1Key] = field(default_factory=list)

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        signed = sign_sighash_groups(skeleton, self.keys)
        logger.info("Signed %d lock groups", len(signed))


@dataclass
class BalanceTransaction(Operation):
    """Estimate the fee once, balance against ``balancer`` and pad witnesses."""

    balancer: ScriptRef
    change_receiver: ChangeReceiver
    extra_fee_rate: int = 0

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        fee = skeleton.estimate_fee(gateway, self.extra_fee_rate)
        skeleton.balance(gateway, fee, self.balancer, self.change_receiver)
        skeleton.pad_witnesses()
        logger.debug("Balanced transaction %s", hex_encode(skeleton.tx_hash()))

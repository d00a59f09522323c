"""Nervos DAO deposit and two-phase withdraw operations.

A deposit is a cell typed by the DAO script with eight zero bytes of data.
Phase one replaces a mature deposit with a withdrawing cell of the same
capacity whose data is the deposit block number. Phase two consumes
withdrawing cells once the lock period is over and pays out the deposit plus
the interest accrued between both headers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..cells import HeaderDep, InputCell, OutputCell, Witness
from ..config import Network
from ..errors import CapacityTooSmallError, NotFoundError
from ..operation import Log, LogKey, Operation
from ..rpc_client import CellCursor, ChainGateway, SearchFilter, SearchKey
from ..script_ref import ScriptRef
from ..skeleton import TransactionSkeleton
from ..types import (
    DEP_TYPE_CODE,
    Header,
    absolute_epoch_since,
    dao_decode,
    epoch_decode,
    hex_decode,
)
from .basic import AddDeployedCellDep

logger = logging.getLogger(__name__)

DAO_NAME = "dao"
DAO_TYPE_HASH = hex_decode("0x82d76d1b75fe2fd9a27dfbaa65a039221a380d76c926f378d3f81cf3e7e13f2e")
DAO_DEPLOYMENTS = {
    Network.MAINNET: hex_decode("0xe2fb199810d49a4d8beec56718ba2593b665db9d52299a0f9e6e75416d73ff5c"),
    Network.TESTNET: hex_decode("0x8f8c79eb6671709633fe6a46de93c0fedc9c1b8a6527a18d3983879542635c9f"),
}
DAO_DEPLOYMENT_INDEX = 2
DEPOSIT_DATA = bytes(8)
LOCK_PERIOD_EPOCHS = 180


def dao_script(network: Network | str) -> ScriptRef:
    """DAO type script; outside mainnet/testnet it refers to a cell dep named ``dao``."""

    if Network(network) in DAO_DEPLOYMENTS:
        return ScriptRef.type(DAO_TYPE_HASH)
    return ScriptRef.reference(DAO_NAME)


def minimal_unlock_epoch(deposit: Header, withdraw: Header) -> Tuple[int, int, int]:
    """Earliest epoch at which a withdrawing cell may be spent.

    The deposit epoch is advanced by the smallest multiple of the lock period
    covering the epochs elapsed up to the withdraw header; a partially
    elapsed epoch counts as a whole one.
    """

    deposit_number, deposit_index, deposit_length = epoch_decode(deposit.epoch)
    withdraw_number, withdraw_index, withdraw_length = epoch_decode(withdraw.epoch)
    withdraw_fraction = withdraw_index * deposit_length
    deposit_fraction = deposit_index * withdraw_length
    passed = withdraw_number - deposit_number
    if withdraw_fraction > deposit_fraction:
        passed += 1
    rest = (passed + LOCK_PERIOD_EPOCHS - 1) // LOCK_PERIOD_EPOCHS * LOCK_PERIOD_EPOCHS
    return deposit_number + rest, deposit_index, deposit_length


def minimal_unlock_since(deposit: Header, withdraw: Header) -> int:
    return absolute_epoch_since(*minimal_unlock_epoch(deposit, withdraw))


def maximum_withdraw_capacity(
    deposit: Header, withdraw: Header, capacity: int, occupied_capacity: int
) -> int:
    """Deposit capacity plus interest: only the free capacity earns interest."""

    _, deposit_ar, _, _ = dao_decode(deposit.dao)
    _, withdraw_ar, _, _ = dao_decode(withdraw.dao)
    counted = capacity - occupied_capacity
    if counted < 0:
        raise CapacityTooSmallError(capacity, occupied_capacity)
    return counted * withdraw_ar // deposit_ar + occupied_capacity


@dataclass
class AddDaoCelldep(Operation):
    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        AddDeployedCellDep(DAO_NAME, DAO_DEPLOYMENTS, DAO_DEPLOYMENT_INDEX, DEP_TYPE_CODE).run(
            gateway, skeleton, log
        )


@dataclass
class AddDaoDepositOutputCell(Operation):
    """Deposit ``deposit_capacity`` shannons owned by ``owner``."""

    owner: ScriptRef
    deposit_capacity: int

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        output = OutputCell.from_scripts(
            self.owner.to_script(skeleton),
            dao_script(gateway.network).to_script(skeleton),
            DEPOSIT_DATA,
            self.deposit_capacity,
        )
        occupied = output.occupied_capacity()
        if output.capacity < occupied:
            raise CapacityTooSmallError(output.capacity, occupied)
        skeleton.add_output(output)
        AddDaoCelldep().run(gateway, skeleton, log)


@dataclass
class AddDaoWithdrawPhaseOneCells(Operation):
    """Turn mature deposits of ``owner`` into withdrawing cells.

    Deposits are taken in search order while their total stays within
    ``maximal_withdraw_capacity``; a deposit whose block timestamp is after
    ``upperbound_timestamp`` (milliseconds) is skipped. The selected total is
    logged under :attr:`LogKey.DAO_WITHDRAW_PHASE_ONE` as a little-endian u64.
    """

    maximal_withdraw_capacity: int
    upperbound_timestamp: int
    owner: ScriptRef
    transfer_to: Optional[ScriptRef] = None
    tolerate_empty: bool = False

    def search_key(self, network: Network | str, skeleton: TransactionSkeleton) -> SearchKey:
        return SearchKey(
            self.owner.to_script(skeleton),
            filter=SearchFilter(
                script=dao_script(network).to_script(skeleton),
                output_data=DEPOSIT_DATA,
                output_data_filter_mode="exact",
            ),
        )

    def _mature(self, gateway: ChainGateway, block_number: int) -> bool:
        header = gateway.get_header_by_number(block_number)
        if header is None:
            logger.warning("Deposit block %d has no header; skipping", block_number)
            return False
        return header.timestamp <= self.upperbound_timestamp

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        transfer_lock = self.transfer_to.to_script(skeleton) if self.transfer_to else None
        cursor = CellCursor(gateway, self.search_key(gateway.network, skeleton))
        selected = 0
        for cell in cursor:
            if not self._mature(gateway, cell.block_number):
                continue
            deposit = InputCell.from_indexer_cell(cell)
            capacity = deposit.output.capacity
            if selected + capacity > self.maximal_withdraw_capacity:
                break
            selected += capacity
            header_dep = HeaderDep.from_out_point(gateway, deposit.out_point)
            withdrawing = OutputCell.from_scripts(
                transfer_lock or deposit.output.lock,
                deposit.output.type,
                header_dep.header.number.to_bytes(8, "little"),
                capacity,
            )
            skeleton.add_input(deposit)
            skeleton.add_output(withdrawing)
            skeleton.add_header_dependency(header_dep)
            skeleton.add_witness(Witness())
        log.add(LogKey.DAO_WITHDRAW_PHASE_ONE, selected.to_bytes(8, "little"))
        if selected == 0:
            if not self.tolerate_empty:
                raise NotFoundError("no available DAO deposit cells")
            logger.warning("No mature DAO deposits found; nothing to withdraw")
            return
        logger.info("Selected %d shannons of DAO deposits for withdrawal", selected)
        AddDaoCelldep().run(gateway, skeleton, log)


@dataclass
class AddDaoWithdrawPhaseTwoCells(Operation):
    """Settle withdrawing cells of ``owner`` into one plain output.

    Each consumed input gets the minimal unlock epoch as ``since`` and a
    witness whose ``input_type`` holds the header dep index of its deposit
    block. The payout total is logged under
    :attr:`LogKey.DAO_WITHDRAW_PHASE_TWO`.
    """

    maximal_withdraw_capacity: int
    owner: ScriptRef
    transfer_to: Optional[ScriptRef] = None
    tolerate_empty: bool = False

    def search_key(self, network: Network | str, skeleton: TransactionSkeleton) -> SearchKey:
        return SearchKey(
            self.owner.to_script(skeleton),
            filter=SearchFilter(script=dao_script(network).to_script(skeleton)),
        )

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        cursor = CellCursor(gateway, self.search_key(gateway.network, skeleton))
        selected = 0
        payout = 0
        withdraw_headers: List[HeaderDep] = []
        for cell in cursor:
            data = cell.output_data or b""
            if len(data) != 8:
                continue
            deposit_block_number = int.from_bytes(data, "little")
            if deposit_block_number == 0:
                continue
            deposit_header = HeaderDep.from_block_number(gateway, deposit_block_number)
            withdraw_header = HeaderDep.from_out_point(gateway, cell.out_point)
            since = minimal_unlock_since(deposit_header.header, withdraw_header.header)
            withdrawing = InputCell.from_indexer_cell(cell, since)
            capacity = withdrawing.output.capacity
            if selected + capacity > self.maximal_withdraw_capacity:
                break
            selected += capacity
            skeleton.add_input(withdrawing)
            skeleton.add_header_dependency(deposit_header)
            header_index = skeleton.header_dependency_index(deposit_header.block_hash)
            skeleton.add_witness(Witness(input_type=header_index.to_bytes(8, "little")))
            payout += maximum_withdraw_capacity(
                deposit_header.header,
                withdraw_header.header,
                capacity,
                withdrawing.output.occupied_capacity(),
            )
            if withdraw_header not in withdraw_headers:
                withdraw_headers.append(withdraw_header)
        log.add(LogKey.DAO_WITHDRAW_PHASE_TWO, payout.to_bytes(8, "little"))
        if payout == 0:
            if not self.tolerate_empty:
                raise NotFoundError("no available DAO withdrawing cells")
            logger.warning("No DAO withdrawing cells found; nothing to settle")
            return
        for header_dep in withdraw_headers:
            skeleton.add_header_dependency(header_dep)
        receiver = self.transfer_to or self.owner
        output = OutputCell.from_scripts(receiver.to_script(skeleton), None, b"", payout)
        if output.capacity < output.occupied_capacity():
            raise CapacityTooSmallError(output.capacity, output.occupied_capacity())
        skeleton.add_output(output)
        logger.info("Settling %d shannons from DAO withdrawing cells", payout)
        AddDaoCelldep().run(gateway, skeleton, log)

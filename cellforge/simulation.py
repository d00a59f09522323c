"""Offline verification of built transactions.

:class:`TransactionSimulator` runs instructions into a skeleton, resolves it
and hands the result to a :class:`ScriptVerifier`, an external engine that
executes the scripts and reports consumed cycles. The fake-network
operations below let tests put contract code and input cells straight into a
skeleton without any chain behind them.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from .cells import DependencyCell, InputCell, OutputCell, Witness
from .config import Network
from .errors import CellforgeError, NetworkMismatchError, NotFoundError
from .operation import Instruction, Log, Operation
from .rpc_client import ChainGateway
from .script_ref import ScriptRef
from .skeleton import ResolvedCell, ResolvedTransaction, TransactionSkeleton
from .types import (
    DEP_TYPE_CODE,
    HASH_TYPE_DATA,
    HASH_TYPE_DATA1,
    HASH_TYPE_TYPE,
    TYPE_ID_CODE_HASH,
    CellDep,
    CellInput,
    CellOutput,
    Header,
    OutPoint,
    Script,
    blake2b_256,
    hex_encode,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CYCLES = 10_000_000
ALWAYS_SUCCESS_NAME = "always_success"
# Placeholder code for the always-success lock. Verifiers that execute scripts
# must be given the compiled contract through AddFakeContractCelldep instead.
ALWAYS_SUCCESS = b"cellforge:always_success"


def random_hash() -> bytes:
    return secrets.token_bytes(32)


def fake_outpoint() -> OutPoint:
    return OutPoint(random_hash(), 0)


def fake_input() -> CellInput:
    return CellInput(fake_outpoint(), 0)


def always_success_script(args: bytes = b"") -> Script:
    return Script(blake2b_256(ALWAYS_SUCCESS), HASH_TYPE_DATA1, bytes(args))


def fake_header(number: int, timestamp: int, epoch: int, dao: bytes = bytes(32)) -> Header:
    """A header carrying only the fields operations read; every hash is zero."""

    return Header(
        version=0,
        compact_target=0,
        timestamp=timestamp,
        number=number,
        epoch=epoch,
        parent_hash=bytes(32),
        transactions_root=bytes(32),
        proposals_hash=bytes(32),
        extra_hash=bytes(32),
        dao=dao,
    )


def _empty_lock() -> Script:
    return Script(bytes(32), HASH_TYPE_DATA)


def _require_fake(gateway: ChainGateway) -> None:
    if Network(gateway.network) != Network.FAKE:
        raise NetworkMismatchError("fake operations only run against the fake network")


@dataclass
class AddFakeContractCelldep(Operation):
    """Add ``contract_data`` as a code dep named ``name`` at a random out-point.

    With ``type_id_args`` the dep cell carries a type-id type script, so
    references to ``name`` resolve to its type hash instead of its data hash.
    """

    name: str
    contract_data: bytes
    type_id_args: Optional[bytes] = None

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        _require_fake(gateway)
        type_script = None
        if self.type_id_args is not None:
            type_script = Script(TYPE_ID_CODE_HASH, HASH_TYPE_TYPE, bytes(self.type_id_args))
        dep = DependencyCell(
            self.name,
            CellDep(fake_outpoint(), DEP_TYPE_CODE),
            OutputCell(CellOutput(0, _empty_lock(), type_script), bytes(self.contract_data)),
            with_data=True,
        )
        skeleton.add_dependency(dep)
        logger.debug("Added fake contract %r at %s", self.name, dep.cell_dep.out_point)


@dataclass
class AddFakeContractCelldepByName(Operation):
    """Load a compiled contract from ``contract_binary_path / contract``."""

    contract: str
    contract_binary_path: str
    type_id_args: Optional[bytes] = None

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        path = Path(self.contract_binary_path) / self.contract
        if not path.is_file():
            raise NotFoundError(f"contract binary not found: {path}")
        AddFakeContractCelldep(self.contract, path.read_bytes(), self.type_id_args).run(
            gateway, skeleton, log
        )


@dataclass
class AddFakeAlwaysSuccessCelldep(Operation):
    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        skeleton.add_dependency(
            DependencyCell(
                ALWAYS_SUCCESS_NAME,
                CellDep(fake_outpoint(), DEP_TYPE_CODE),
                OutputCell(CellOutput(0, _empty_lock()), ALWAYS_SUCCESS),
                with_data=True,
            )
        )


@dataclass
class AddFakeInputCell(Operation):
    """Add an input that exists nowhere but in the skeleton.

    ``capacity`` is added on top of the occupied capacity unless
    ``absolute_capacity`` is set.
    """

    lock_script: ScriptRef
    type_script: Optional[ScriptRef] = None
    data: bytes = b""
    capacity: int = 0
    absolute_capacity: bool = False

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        lock = self.lock_script.to_script(skeleton)
        type_script = self.type_script.to_script(skeleton) if self.type_script else None
        cell = OutputCell.from_scripts(lock, type_script, self.data)
        if self.absolute_capacity:
            cell.capacity = self.capacity
        else:
            cell.capacity = cell.capacity + self.capacity
        skeleton.add_input(InputCell(fake_input(), cell, with_data=True))
        skeleton.add_witness(Witness())


class ScriptVerifier(Protocol):
    """Executes every script of a resolved transaction."""

    def verify(self, resolved_tx: ResolvedTransaction, max_cycles: int) -> int:
        """Return consumed cycles, raising when a script fails."""


class ScriptVerificationError(CellforgeError):
    """Raised by verifiers when a script cannot run or rejects the transaction."""


class CellDepVerifier:
    """Checks that the code of every script is present, without running it.

    Reports zero cycles. Useful where no execution engine is available but a
    missing or mistyped cell dep should still fail the simulation.
    """

    def verify(self, resolved_tx: ResolvedTransaction, max_cycles: int) -> int:
        deps = resolved_tx.resolved_cell_deps
        for script in _scripts_to_run(resolved_tx):
            if not any(_provides(dep, script) for dep in deps):
                raise ScriptVerificationError(
                    f"no cell dep provides code hash {hex_encode(script.code_hash)}"
                )
        return 0


def _scripts_to_run(resolved_tx: ResolvedTransaction) -> List[Script]:
    scripts: List[Script] = []
    for cell in resolved_tx.resolved_inputs:
        scripts.append(cell.cell.lock)
        if cell.cell.type is not None:
            scripts.append(cell.cell.type)
    for output in resolved_tx.transaction.raw.outputs:
        if output.type is not None:
            scripts.append(output.type)
    unique: List[Script] = []
    for script in scripts:
        if script not in unique and script.code_hash != TYPE_ID_CODE_HASH:
            unique.append(script)
    return unique


def _provides(dep: ResolvedCell, script: Script) -> bool:
    if script.hash_type == HASH_TYPE_TYPE:
        return dep.cell.type_hash() == script.code_hash
    return dep.cell.data_hash() == script.code_hash


class TransactionSimulator:
    """Build a skeleton from instructions and verify it with a :class:`ScriptVerifier`."""

    def __init__(self, verifier: ScriptVerifier, print_tx: bool = False) -> None:
        self.verifier = verifier
        self.print_tx = print_tx

    def verify(
        self,
        gateway: ChainGateway,
        instructions: Iterable[Instruction],
        max_cycles: int = DEFAULT_MAX_CYCLES,
        skeleton: TransactionSkeleton | None = None,
    ) -> int:
        skeleton = TransactionSkeleton() if skeleton is None else skeleton
        log = Log()
        for instruction in instructions:
            instruction.run(gateway, skeleton, log)
        if self.print_tx:
            logger.info("Transaction skeleton:\n%s", skeleton.to_json())
        resolved = skeleton.to_resolved_transaction(gateway)
        cycles = self.verifier.verify(resolved, max_cycles)
        logger.info("Verified transaction %s in %d cycles", hex_encode(skeleton.tx_hash()), cycles)
        return cycles

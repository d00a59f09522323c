"""Mutable transaction skeleton and its balancing/submission helpers."""

from __future__ import annotations

import copy
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .cells import DependencyCell, HeaderDep, InputCell, OutputCell, Witness
from .errors import (
    BalanceInvariantError,
    ConfirmationTimeoutError,
    DuplicateInputError,
    EmptyInputsError,
    InsufficientFundsError,
    NotFoundError,
    ReferenceUnresolvedError,
    SkeletonIndexError,
    TransactionRejectedError,
)
from .fees import estimate_fee, format_capacity
from .rpc_client import CellCursor, ChainGateway, IndexerCell, SearchFilter, SearchKey
from .script_ref import ConcreteScript, ReferenceScript, ScriptRef
from .types import (
    DEP_TYPE_CODE,
    DEP_TYPE_DEP_GROUP,
    HASH_TYPE_TYPE,
    OUT_POINT_VEC,
    OutPoint,
    RawTransaction,
    Script,
    Transaction,
    hex_encode,
    new_blake2b,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0
REHYDRATE_WORKERS = 8


@dataclass
class ChangeReceiver:
    """Where balancing puts the surplus: a new output for a lock, or an existing output."""

    script: ScriptRef | None = None
    output_index: int | None = None

    @classmethod
    def to_script(cls, script: ScriptRef) -> "ChangeReceiver":
        return cls(script=script)

    @classmethod
    def to_address(cls, address: str) -> "ChangeReceiver":
        return cls(script=ScriptRef.from_address(address))

    @classmethod
    def to_output(cls, index: int) -> "ChangeReceiver":
        return cls(output_index=index)


@dataclass
class ResolvedCell:
    out_point: OutPoint
    cell: OutputCell


@dataclass
class ResolvedTransaction:
    """A transaction plus every cell it reads, as a script verifier needs them.

    Dep-group members appear in ``resolved_cell_deps`` next to the direct
    dependencies; the group cells themselves are kept in
    ``resolved_dep_groups``.
    """

    transaction: Transaction
    resolved_inputs: List[ResolvedCell] = field(default_factory=list)
    resolved_cell_deps: List[ResolvedCell] = field(default_factory=list)
    resolved_dep_groups: List[ResolvedCell] = field(default_factory=list)


def _plain_capacity_cell(cell: IndexerCell) -> bool:
    return cell.output.type is None and not cell.output_data


class TransactionSkeleton:
    """Inputs, outputs, dependencies and witnesses of a transaction under construction.

    Inputs are strict: pushing an input whose out-point is already present
    raises :class:`DuplicateInputError`. Cell and header dependencies are
    lenient: pushing one that already exists is a silent no-op.
    """

    def __init__(self) -> None:
        self.inputs: List[InputCell] = []
        self.outputs: List[OutputCell] = []
        self.cell_deps: List[DependencyCell] = []
        self.header_deps: List[HeaderDep] = []
        self.witnesses: List[Witness] = []

    def __repr__(self) -> str:
        return (
            f"TransactionSkeleton(inputs={len(self.inputs)}, outputs={len(self.outputs)}, "
            f"cell_deps={len(self.cell_deps)}, header_deps={len(self.header_deps)}, "
            f"witnesses={len(self.witnesses)})"
        )

    def snapshot(self) -> "TransactionSkeleton":
        return copy.deepcopy(self)

    # Rehydration ---------------------------------------------------------

    @classmethod
    def from_transaction(cls, gateway: ChainGateway, tx: Transaction) -> "TransactionSkeleton":
        """Rebuild a skeleton from a wire transaction, fetching referenced cells.

        Inputs, dependencies and header dependencies are fetched concurrently.
        Dependencies get synthetic ``unknown-<index>`` names.
        """

        raw = tx.raw
        skeleton = cls()
        with ThreadPoolExecutor(max_workers=REHYDRATE_WORKERS) as pool:
            inputs = pool.map(
                lambda item: InputCell.from_out_point(
                    gateway, item.previous_output, item.since, with_data=True
                ),
                raw.inputs,
            )
            deps = pool.map(
                lambda pair: DependencyCell.from_out_point(
                    gateway, f"unknown-{pair[0]}", pair[1].out_point, pair[1].dep_type
                ),
                list(enumerate(raw.cell_deps)),
            )
            headers = pool.map(
                lambda block_hash: HeaderDep.from_block_hash(gateway, block_hash),
                raw.header_deps,
            )
            skeleton.inputs = list(inputs)
            skeleton.cell_deps = list(deps)
            skeleton.header_deps = list(headers)
        skeleton.outputs = [
            OutputCell(output, data) for output, data in zip(raw.outputs, raw.outputs_data)
        ]
        skeleton.witnesses = [Witness.from_bytes(item) for item in tx.witnesses]
        logger.debug("Rehydrated %r", skeleton)
        return skeleton

    # Inputs ---------------------------------------------------------------

    def contains_input(self, cell_input: InputCell) -> bool:
        return cell_input in self.inputs

    def add_input(self, cell_input: InputCell) -> "TransactionSkeleton":
        if self.contains_input(cell_input):
            raise DuplicateInputError(cell_input.out_point)
        self.inputs.append(cell_input)
        return self

    def add_inputs(self, cell_inputs: Iterable[InputCell]) -> "TransactionSkeleton":
        """Append all ``cell_inputs`` or none of them."""

        batch = list(cell_inputs)
        seen: List[InputCell] = []
        for cell_input in batch:
            if self.contains_input(cell_input) or cell_input in seen:
                raise DuplicateInputError(cell_input.out_point)
            seen.append(cell_input)
        self.inputs.extend(batch)
        return self

    def add_input_from_script(self, gateway: ChainGateway, lock: ScriptRef) -> InputCell:
        """Add the first unclaimed plain-capacity cell locked by ``lock``."""

        search_key = SearchKey(
            lock.to_script(self),
            filter=SearchFilter(script_len_range=(0, 1), output_data_len_range=(0, 1)),
        )
        cursor = CellCursor(
            gateway,
            search_key,
            predicate=lambda cell: _plain_capacity_cell(cell)
            and not any(item.out_point == cell.out_point for item in self.inputs),
        )
        cell = cursor.next()
        if cell is None:
            raise NotFoundError("no available input cell for lock script")
        cell_input = InputCell.from_indexer_cell(cell)
        self.inputs.append(cell_input)
        return cell_input

    def add_input_from_address(self, gateway: ChainGateway, address: str) -> InputCell:
        return self.add_input_from_script(gateway, ScriptRef.from_address(address))

    def input_at(self, index: int) -> InputCell:
        if not 0 <= index < len(self.inputs):
            raise SkeletonIndexError(f"input index {index} out of range")
        return self.inputs[index]

    def remove_input(self, index: int) -> InputCell:
        if not 0 <= index < len(self.inputs):
            raise SkeletonIndexError(f"input index {index} out of range")
        return self.inputs.pop(index)

    def pop_input(self) -> InputCell:
        if not self.inputs:
            raise SkeletonIndexError("no input to pop")
        return self.inputs.pop()

    # Outputs --------------------------------------------------------------

    def add_output(self, cell_output: OutputCell) -> "TransactionSkeleton":
        self.outputs.append(cell_output)
        return self

    def add_outputs(self, cell_outputs: Iterable[OutputCell]) -> "TransactionSkeleton":
        self.outputs.extend(cell_outputs)
        return self

    def add_output_from_script(self, lock: ScriptRef, data: bytes = b"") -> OutputCell:
        """Append an output holding exactly its occupied capacity."""

        output = OutputCell.from_scripts(lock.to_script(self), None, data)
        self.outputs.append(output)
        return output

    def add_output_from_address(self, address: str, data: bytes = b"") -> OutputCell:
        return self.add_output_from_script(ScriptRef.from_address(address), data)

    def output_at(self, index: int) -> OutputCell:
        if not 0 <= index < len(self.outputs):
            raise SkeletonIndexError(f"output index {index} out of range")
        return self.outputs[index]

    def remove_output(self, index: int) -> OutputCell:
        if not 0 <= index < len(self.outputs):
            raise SkeletonIndexError(f"output index {index} out of range")
        return self.outputs.pop(index)

    def pop_output(self) -> OutputCell:
        if not self.outputs:
            raise SkeletonIndexError("no output to pop")
        return self.outputs.pop()

    # Dependencies ---------------------------------------------------------

    def contains_dependency(self, dep: DependencyCell) -> bool:
        return dep in self.cell_deps

    def add_dependency(self, dep: DependencyCell) -> "TransactionSkeleton":
        if not self.contains_dependency(dep):
            self.cell_deps.append(dep)
        return self

    def add_dependencies(self, deps: Iterable[DependencyCell]) -> "TransactionSkeleton":
        for dep in deps:
            self.add_dependency(dep)
        return self

    def get_dependency_by_name(self, name: str) -> Optional[DependencyCell]:
        for dep in self.cell_deps:
            if dep.name == name:
                return dep
        return None

    def find_dependency_by_script(self, script: ScriptRef) -> Optional[DependencyCell]:
        """Locate the dependency providing ``script``'s code.

        A reference matches by name. A concrete ``type`` script matches the
        dependency whose type-script hash equals its code hash; any other
        concrete script matches a dependency with known data whose data hash
        equals its code hash.
        """

        if isinstance(script, ReferenceScript):
            return self.get_dependency_by_name(script.dependency)
        if not isinstance(script, ConcreteScript):
            return None
        for dep in self.cell_deps:
            if script.hash_type == HASH_TYPE_TYPE:
                if dep.output.type_hash() == script.code_hash:
                    return dep
            elif dep.with_data and dep.output.data_hash() == script.code_hash:
                return dep
        return None

    def add_header_dependency(self, header_dep: HeaderDep) -> "TransactionSkeleton":
        if header_dep not in self.header_deps:
            self.header_deps.append(header_dep)
        return self

    def header_dependency_index(self, block_hash: bytes) -> int:
        for index, header_dep in enumerate(self.header_deps):
            if header_dep.block_hash == block_hash:
                return index
        raise NotFoundError(f"header dep {hex_encode(block_hash)} not in skeleton")

    # Witnesses ------------------------------------------------------------

    def add_witness(self, witness: Witness) -> "TransactionSkeleton":
        self.witnesses.append(witness)
        return self

    def add_witnesses(self, witnesses: Iterable[Witness]) -> "TransactionSkeleton":
        self.witnesses.extend(witnesses)
        return self

    def pad_witnesses(self) -> "TransactionSkeleton":
        """Append empty witnesses until there is one per input."""

        while len(self.witnesses) < len(self.inputs):
            self.witnesses.append(Witness())
        return self

    # Capacity -------------------------------------------------------------

    def total_inputs_capacity(self) -> int:
        return sum(item.output.capacity for item in self.inputs)

    def total_outputs_capacity(self) -> int:
        return sum(item.capacity for item in self.outputs)

    def needed_capacity(self) -> int:
        """How much more input capacity the outputs need, saturating at zero."""

        return max(self.total_outputs_capacity() - self.total_inputs_capacity(), 0)

    def exceeded_capacity(self) -> int:
        """Input capacity left over after the outputs, saturating at zero."""

        return max(self.total_inputs_capacity() - self.total_outputs_capacity(), 0)

    # Script groups --------------------------------------------------------

    def _resolve_for_grouping(self, script: ScriptRef | Script) -> Script | None:
        if isinstance(script, Script):
            return script
        try:
            return script.to_script(self)
        except ReferenceUnresolvedError:
            return None

    def lock_script_groups(self, script: ScriptRef | Script) -> Tuple[List[int], List[int]]:
        """Indices of inputs and outputs locked by ``script``."""

        target = self._resolve_for_grouping(script)
        if target is None:
            return [], []
        inputs = [i for i, item in enumerate(self.inputs) if item.output.lock == target]
        outputs = [i for i, item in enumerate(self.outputs) if item.lock == target]
        return inputs, outputs

    def type_script_groups(self, script: ScriptRef | Script) -> Tuple[List[int], List[int]]:
        target = self._resolve_for_grouping(script)
        if target is None:
            return [], []
        inputs = [i for i, item in enumerate(self.inputs) if item.output.type == target]
        outputs = [i for i, item in enumerate(self.outputs) if item.type == target]
        return inputs, outputs

    # Unique ids -----------------------------------------------------------

    def derive_unique_id(self, output_index: int) -> bytes:
        """Type-id style identifier bound to the first input and ``output_index``."""

        if not self.inputs:
            raise EmptyInputsError("cannot derive a unique id without inputs")
        hasher = new_blake2b()
        hasher.update(self.inputs[0].cell_input.molecule())
        hasher.update(output_index.to_bytes(8, "little"))
        return hasher.digest()

    # Fees and balancing ---------------------------------------------------

    def estimate_fee(self, gateway: ChainGateway, extra_fee_rate: int = 0) -> int:
        """Fee for the skeleton's current serialized size."""

        size = self.to_transaction().serialized_size()
        return estimate_fee(gateway, size, extra_fee_rate=extra_fee_rate).fee

    def _change_output_index(self, change_receiver: ChangeReceiver) -> int:
        if change_receiver.output_index is not None:
            if not 0 <= change_receiver.output_index < len(self.outputs):
                raise SkeletonIndexError(
                    f"change output index {change_receiver.output_index} out of range"
                )
            return change_receiver.output_index
        if change_receiver.script is None:
            raise ValueError("change receiver needs a script or an output index")
        self.add_output_from_script(change_receiver.script)
        return len(self.outputs) - 1

    def balance(
        self,
        gateway: ChainGateway,
        fee: int,
        balancer: ScriptRef,
        change_receiver: ChangeReceiver,
    ) -> "TransactionSkeleton":
        """Pull capacity from ``balancer`` until inputs cover outputs plus ``fee``.

        The surplus beyond ``fee`` is added to the change output, so afterwards
        ``exceeded_capacity() == fee``.
        """

        change_index = self._change_output_index(change_receiver)
        while self.exceeded_capacity() < fee:
            try:
                self.add_input_from_script(gateway, balancer)
            except NotFoundError as exc:
                logger.warning(
                    "Insufficient funds while balancing: still need %s",
                    format_capacity(fee + self.needed_capacity() - self.exceeded_capacity()),
                )
                raise InsufficientFundsError(
                    "balancer has no more unclaimed cells to cover outputs and fee"
                ) from exc
        surplus = self.exceeded_capacity()
        change = self.outputs[change_index]
        change.capacity = change.capacity + surplus - fee
        if self.exceeded_capacity() != fee:
            raise BalanceInvariantError(self.exceeded_capacity(), fee)
        logger.info(
            "Balanced skeleton: %d inputs, fee %s, change output %d holds %s",
            len(self.inputs),
            format_capacity(fee),
            change_index,
            format_capacity(change.capacity),
        )
        return self

    # Conversion -----------------------------------------------------------

    def to_transaction(self) -> Transaction:
        raw = RawTransaction(
            version=0,
            cell_deps=tuple(dep.cell_dep for dep in self.cell_deps),
            header_deps=tuple(dep.block_hash for dep in self.header_deps),
            inputs=tuple(item.cell_input for item in self.inputs),
            outputs=tuple(item.output for item in self.outputs),
            outputs_data=tuple(item.data for item in self.outputs),
        )
        return Transaction(raw, tuple(witness.to_bytes() for witness in self.witnesses))

    def tx_hash(self) -> bytes:
        return self.to_transaction().hash()

    def to_json(self) -> str:
        return json.dumps(self.to_transaction().rpc(), indent=2)

    def to_resolved_transaction(self, gateway: ChainGateway) -> ResolvedTransaction:
        """Attach every consumed and referenced cell, expanding dep groups."""

        resolved = ResolvedTransaction(self.to_transaction())
        for item in self.inputs:
            resolved.resolved_inputs.append(ResolvedCell(item.out_point, item.output))
        for dep in self.cell_deps:
            if not dep.with_data:
                dep.refresh(gateway)
            out_point = dep.cell_dep.out_point
            if dep.cell_dep.dep_type != DEP_TYPE_DEP_GROUP:
                resolved.resolved_cell_deps.append(ResolvedCell(out_point, dep.output))
                continue
            for raw_member in OUT_POINT_VEC.decode(dep.output.data):
                member_point = OutPoint.molecule_decode(raw_member)
                member = DependencyCell.from_out_point(
                    gateway, "", member_point, DEP_TYPE_CODE, with_data=True
                )
                resolved.resolved_cell_deps.append(ResolvedCell(member_point, member.output))
            resolved.resolved_dep_groups.append(ResolvedCell(out_point, dep.output))
        return resolved

    # Submission -----------------------------------------------------------

    def submit_and_await(
        self,
        gateway: ChainGateway,
        confirmations: int = 0,
        timeout: float | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> bytes:
        """Send the transaction and optionally wait for ``confirmations`` blocks.

        Returns the transaction hash. A rejected transaction raises
        :class:`TransactionRejectedError`; exceeding ``timeout`` seconds raises
        :class:`ConfirmationTimeoutError`.
        """

        tx_hash = gateway.send_transaction(self.to_transaction())
        hash_hex = hex_encode(tx_hash)
        if confirmations == 0:
            return tx_hash

        started = time.monotonic()
        committed_at: int | None = None
        while True:
            if timeout is not None and time.monotonic() - started > timeout:
                raise ConfirmationTimeoutError(hash_hex, timeout)
            time.sleep(poll_interval)
            status = gateway.get_transaction(tx_hash)
            if status is None:
                raise NotFoundError(f"transaction {hash_hex} not found after submission")
            tx_status = status.tx_status
            if tx_status.status == "rejected":
                raise TransactionRejectedError(hash_hex, tx_status.reason or "unknown")
            if tx_status.status != "committed":
                logger.debug("Transaction %s is %s", hash_hex, tx_status.status)
                continue
            if committed_at is None:
                if tx_status.block_number is None:
                    continue
                committed_at = tx_status.block_number
                logger.info("Transaction %s committed in block %d", hash_hex, committed_at)
            if gateway.get_tip_block_number() >= committed_at + confirmations:
                return tx_hash

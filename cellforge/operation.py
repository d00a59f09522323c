"""Operation pipeline: operations, instructions, the calculator and its log.

An :class:`Operation` performs one mutation of a
:class:`~cellforge.skeleton.TransactionSkeleton` against a gateway. An
:class:`Instruction` runs its operations strictly in order and is consumed by
running. :class:`TransactionCalculator` runs instructions over one skeleton
and one :class:`Log`, aborting on the first failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .rpc_client import ChainGateway
from .skeleton import TransactionSkeleton

logger = logging.getLogger(__name__)


class LogKey(str, Enum):
    """Side-channel values operations report back to the caller."""

    NEW_SPORE_ID = "NEW_SPORE_ID"
    NEW_CLUSTER_ID = "NEW_CLUSTER_ID"
    CLUSTER_CELL_OWNER_LOCK = "CLUSTER_CELL_OWNER_LOCK"
    DAO_WITHDRAW_PHASE_ONE = "DAO_WITHDRAW_PHASE_ONE"
    DAO_WITHDRAW_PHASE_TWO = "DAO_WITHDRAW_PHASE_TWO"


@dataclass(frozen=True)
class LogEntry:
    key: LogKey
    value: bytes


class Log:
    """Ordered record of every value emitted during a calculator run.

    Emitting the same key twice keeps both values; use :meth:`last` for the
    most recent one and :meth:`all` for every one in emission order.
    """

    def __init__(self, entries: Iterable[LogEntry] | None = None) -> None:
        self._entries: List[LogEntry] = list(entries or [])

    def add(self, key: LogKey, value: bytes) -> None:
        self._entries.append(LogEntry(LogKey(key), bytes(value)))

    def last(self, key: LogKey) -> Optional[bytes]:
        for entry in reversed(self._entries):
            if entry.key == key:
                return entry.value
        return None

    def all(self, key: LogKey) -> List[bytes]:
        return [entry.value for entry in self._entries if entry.key == key]

    def as_dict(self) -> Dict[LogKey, bytes]:
        """Last value per key."""

        return {entry.key: entry.value for entry in self._entries}

    def __contains__(self, key: object) -> bool:
        return any(entry.key == key for entry in self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Log({[(entry.key.value, entry.value.hex()) for entry in self._entries]})"


class Operation:
    """Interface for one atomic skeleton mutation.

    Implementations must only mutate the skeleton and append to the log, and
    must not keep state between runs.
    """

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        raise NotImplementedError

    def __call__(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        self.run(gateway, skeleton, log)


class Instruction:
    """An ordered list of operations executed in sequence."""

    def __init__(self, operations: Iterable[Operation] | None = None) -> None:
        self.operations: List[Operation] = list(operations or [])

    def __len__(self) -> int:
        return len(self.operations)

    def __repr__(self) -> str:
        return f"Instruction({[type(op).__name__ for op in self.operations]})"

    def push(self, operation: Operation) -> "Instruction":
        self.operations.append(operation)
        return self

    def pop(self) -> Optional[Operation]:
        return self.operations.pop() if self.operations else None

    def remove(self, index: int) -> Operation:
        return self.operations.pop(index)

    def extend(self, operations: Iterable[Operation]) -> "Instruction":
        self.operations.extend(operations)
        return self

    def merge(self, other: "Instruction") -> "Instruction":
        """Move every operation of ``other`` to the end of this instruction."""

        self.operations.extend(other.operations)
        other.operations = []
        return self

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        """Run every operation in order; the instruction is empty afterwards."""

        operations, self.operations = self.operations, []
        for index, operation in enumerate(operations):
            logger.debug(
                "Running operation %d/%d: %s", index + 1, len(operations), type(operation).__name__
            )
            operation.run(gateway, skeleton, log)


class TransactionCalculator:
    """Run instructions in sequence against a shared skeleton and log."""

    def __init__(self, instructions: Iterable[Instruction] | None = None) -> None:
        self.instructions: List[Instruction] = list(instructions or [])

    def instruction(self, instruction: Instruction) -> "TransactionCalculator":
        self.instructions.append(instruction)
        return self

    def new_skeleton(self, gateway: ChainGateway) -> Tuple[TransactionSkeleton, Log]:
        skeleton = TransactionSkeleton()
        log = self.apply_skeleton(gateway, skeleton)
        return skeleton, log

    def apply_skeleton(
        self,
        gateway: ChainGateway,
        skeleton: TransactionSkeleton,
        log: Log | None = None,
    ) -> Log:
        """Run all instructions over ``skeleton``; the first failure aborts the run."""

        log = Log() if log is None else log
        instructions, self.instructions = self.instructions, []
        logger.info("Calculating transaction from %d instructions", len(instructions))
        for index, instruction in enumerate(instructions):
            try:
                instruction.run(gateway, skeleton, log)
            except Exception as exc:
                logger.error(
                    "Instruction %d/%d failed: %s", index + 1, len(instructions), exc
                )
                raise
        logger.info("Calculated %r", skeleton)
        return log

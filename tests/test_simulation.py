from __future__ import annotations

from pathlib import Path

import pytest

from cellforge.config import Network
from cellforge.errors import NetworkMismatchError, NotFoundError
from cellforge.fake import FakeGateway
from cellforge.operation import Instruction, Log
from cellforge.operations import AddOutputCell
from cellforge.script_ref import ScriptRef
from cellforge.simulation import (
    ALWAYS_SUCCESS,
    ALWAYS_SUCCESS_NAME,
    AddFakeAlwaysSuccessCelldep,
    AddFakeContractCelldep,
    AddFakeContractCelldepByName,
    AddFakeInputCell,
    CellDepVerifier,
    ScriptVerificationError,
    TransactionSimulator,
    always_success_script,
)
from cellforge.skeleton import ResolvedTransaction, TransactionSkeleton
from cellforge.types import HASH_TYPE_TYPE, TYPE_ID_CODE_HASH, Script, blake2b_256

CKB = 10**8


class RecordingVerifier:
    def __init__(self, cycles: int = 1234) -> None:
        self.cycles = cycles
        self.calls: list = []

    def verify(self, resolved_tx: ResolvedTransaction, max_cycles: int) -> int:
        self.calls.append((resolved_tx, max_cycles))
        return self.cycles


def _always_success_transfer() -> Instruction:
    lock = ScriptRef.reference(ALWAYS_SUCCESS_NAME)
    return Instruction(
        [
            AddFakeAlwaysSuccessCelldep(),
            AddFakeInputCell(lock, capacity=100 * CKB),
            AddOutputCell(lock.with_args(b"\x01"), capacity=10 * CKB),
        ]
    )


def test_always_success_reference_resolves() -> None:
    skeleton = TransactionSkeleton()
    _always_success_transfer().run(FakeGateway(), skeleton, Log())

    assert skeleton.inputs[0].output.lock == always_success_script()
    assert skeleton.outputs[0].lock == always_success_script(b"\x01")
    assert skeleton.inputs[0].output.capacity == 141 * CKB
    assert skeleton.cell_deps[0].output.data == ALWAYS_SUCCESS
    assert len(skeleton.witnesses) == 1


def test_simulator_hands_resolved_transaction_to_verifier() -> None:
    verifier = RecordingVerifier()

    cycles = TransactionSimulator(verifier).verify(FakeGateway(), [_always_success_transfer()], max_cycles=99)

    assert cycles == 1234
    resolved, max_cycles = verifier.calls[0]
    assert max_cycles == 99
    assert len(resolved.resolved_inputs) == 1
    assert len(resolved.resolved_cell_deps) == 1
    assert resolved.transaction.raw.outputs[0].lock == always_success_script(b"\x01")


def test_cell_dep_verifier_accepts_provided_code() -> None:
    assert TransactionSimulator(CellDepVerifier()).verify(FakeGateway(), [_always_success_transfer()]) == 0


def test_cell_dep_verifier_rejects_missing_code() -> None:
    stranger = Script(b"\x42" * 32, HASH_TYPE_TYPE, b"")
    instruction = Instruction(
        [AddFakeAlwaysSuccessCelldep(), AddFakeInputCell(ScriptRef.from_script(stranger))]
    )

    with pytest.raises(ScriptVerificationError, match="no cell dep"):
        TransactionSimulator(CellDepVerifier()).verify(FakeGateway(), [instruction])


def test_type_id_contract_resolves_by_type_hash() -> None:
    skeleton = TransactionSkeleton()
    gateway = FakeGateway()
    AddFakeContractCelldep("upgradable", b"v1 code", type_id_args=b"\x01")(gateway, skeleton, Log())
    AddFakeInputCell(ScriptRef.reference("upgradable"))(gateway, skeleton, Log())

    type_id = Script(TYPE_ID_CODE_HASH, HASH_TYPE_TYPE, b"\x01")
    assert skeleton.inputs[0].output.lock == Script(type_id.hash(), HASH_TYPE_TYPE)
    assert CellDepVerifier().verify(skeleton.to_resolved_transaction(gateway), 0) == 0


def test_contract_loaded_from_disk(tmp_path: Path) -> None:
    (tmp_path / "counter").write_bytes(b"\x7fELF counter")
    skeleton = TransactionSkeleton()

    AddFakeContractCelldepByName("counter", str(tmp_path))(FakeGateway(), skeleton, Log())

    dep = skeleton.get_dependency_by_name("counter")
    assert dep is not None
    assert dep.output.data_hash() == blake2b_256(b"\x7fELF counter")
    with pytest.raises(NotFoundError):
        AddFakeContractCelldepByName("missing", str(tmp_path))(FakeGateway(), skeleton, Log())


def test_fake_operations_refuse_real_networks() -> None:
    with pytest.raises(NetworkMismatchError):
        AddFakeContractCelldep("x", b"code")(FakeGateway(Network.TESTNET), TransactionSkeleton(), Log())

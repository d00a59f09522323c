from __future__ import annotations

import pytest

from cellforge.cells import DependencyCell, HeaderDep, InputCell, OutputCell, Witness
from cellforge.errors import (
    ConfirmationTimeoutError,
    DuplicateInputError,
    EmptyInputsError,
    InsufficientFundsError,
    ReferenceUnresolvedError,
    TransactionRejectedError,
)
from cellforge.fake import FakeGateway
from cellforge.rpc_client import TransactionWithStatus
from cellforge.script_ref import ScriptRef
from cellforge.simulation import fake_header
from cellforge.skeleton import ChangeReceiver, TransactionSkeleton
from cellforge.types import (
    DEP_TYPE_DEP_GROUP,
    HASH_TYPE_DATA1,
    HASH_TYPE_TYPE,
    OUT_POINT_VEC,
    CellDep,
    CellInput,
    CellOutput,
    OutPoint,
    Script,
    Transaction,
    WitnessArgs,
    blake2b_256,
)

ALICE = Script(b"\xaa" * 32, HASH_TYPE_TYPE, b"\x01" * 20)
BOB = Script(b"\xaa" * 32, HASH_TYPE_TYPE, b"\x02" * 20)
CKB = 10**8


def _input(tag: int, capacity_ckb: int, lock: Script = ALICE) -> InputCell:
    return InputCell(
        CellInput(OutPoint(bytes([tag]) * 32, 0)),
        OutputCell.from_scripts(lock, capacity=capacity_ckb * CKB),
    )


def _code_dep(name: str, data: bytes, tag: int = 0xD0) -> DependencyCell:
    return DependencyCell(
        name,
        CellDep(OutPoint(bytes([tag]) * 32, 0)),
        OutputCell.from_scripts(ALICE, data=data),
        with_data=True,
    )


class ScriptedGateway(FakeGateway):
    """Fake gateway whose submitted transactions follow a fixed status script."""

    def __init__(self, statuses: list, reason: str | None = None) -> None:
        super().__init__()
        self.script = list(statuses)
        self.reason = reason

    def get_transaction(self, tx_hash: bytes) -> TransactionWithStatus | None:
        if self.script:
            status, block_number, tip = self.script.pop(0)
            self.insert_tx_status(tx_hash, b"\x01" * 32, block_number, status, self.reason)
            self.set_tip(tip)
        return super().get_transaction(tx_hash)


def test_duplicate_input_is_rejected() -> None:
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    with pytest.raises(DuplicateInputError):
        skeleton.add_input(_input(1, 100))


def test_add_inputs_is_all_or_nothing() -> None:
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    with pytest.raises(DuplicateInputError):
        skeleton.add_inputs([_input(2, 10), _input(3, 10), _input(2, 10)])

    assert len(skeleton.inputs) == 1


def test_dependencies_are_deduplicated() -> None:
    skeleton = TransactionSkeleton()
    skeleton.add_dependency(_code_dep("a", b"code"))
    skeleton.add_dependency(_code_dep("renamed", b"other"))

    assert len(skeleton.cell_deps) == 1
    assert skeleton.get_dependency_by_name("a") is not None


def test_capacity_accounting() -> None:
    skeleton = TransactionSkeleton().add_inputs([_input(1, 100), _input(2, 50)])
    skeleton.add_output(OutputCell.from_scripts(BOB, capacity=120 * CKB))

    assert skeleton.exceeded_capacity() == 30 * CKB
    assert skeleton.needed_capacity() == 0

    skeleton.add_output(OutputCell.from_scripts(BOB, capacity=100 * CKB))
    assert skeleton.needed_capacity() == 70 * CKB
    assert skeleton.exceeded_capacity() == 0


def test_unique_id_depends_on_first_input_and_index() -> None:
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    first = skeleton.derive_unique_id(0)

    assert first == skeleton.derive_unique_id(0)
    assert first != skeleton.derive_unique_id(1)
    assert len(first) == 32
    with pytest.raises(EmptyInputsError):
        TransactionSkeleton().derive_unique_id(0)


def test_reference_resolves_to_dependency_data_hash() -> None:
    skeleton = TransactionSkeleton()
    ref = ScriptRef.reference("dep-a", b"\x07")
    with pytest.raises(ReferenceUnresolvedError):
        ref.to_script(skeleton)

    skeleton.add_dependency(_code_dep("dep-a", b"contract"))
    script = ref.to_script(skeleton)

    assert script == Script(blake2b_256(b"contract"), HASH_TYPE_DATA1, b"\x07")
    with pytest.raises(ReferenceUnresolvedError):
        ScriptRef.reference("missing").to_script(skeleton)


def test_reference_to_dep_group_is_ambiguous() -> None:
    group = DependencyCell(
        "group",
        CellDep(OutPoint(b"\x0e" * 32, 0), DEP_TYPE_DEP_GROUP),
        OutputCell.from_scripts(ALICE),
    )
    skeleton = TransactionSkeleton().add_dependency(group)

    with pytest.raises(ReferenceUnresolvedError, match="dep group"):
        ScriptRef.reference("group").to_script(skeleton)


def test_find_dependency_by_concrete_type_script() -> None:
    type_id = Script(b"\x00" * 32, HASH_TYPE_TYPE, b"id")
    dep = DependencyCell(
        "typed",
        CellDep(OutPoint(b"\x0f" * 32, 0)),
        OutputCell.from_scripts(ALICE, type_id, b"code"),
    )
    skeleton = TransactionSkeleton().add_dependency(dep)

    assert skeleton.find_dependency_by_script(ScriptRef.type(type_id.hash())) is dep
    assert skeleton.find_dependency_by_script(ScriptRef.type(b"\x01" * 32)) is None


def test_balance_leaves_exactly_the_fee() -> None:
    gateway = FakeGateway()
    gateway.insert_cell(OutPoint(b"\x01" * 32, 0), OutputCell.from_scripts(ALICE, capacity=200 * CKB))
    skeleton = TransactionSkeleton()
    skeleton.add_output(OutputCell.from_scripts(BOB, capacity=100 * CKB))

    skeleton.balance(
        gateway, 1000, ScriptRef.from_script(ALICE), ChangeReceiver.to_script(ScriptRef.from_script(ALICE))
    )

    assert len(skeleton.inputs) == 1
    assert len(skeleton.outputs) == 2
    assert skeleton.exceeded_capacity() == 1000
    assert skeleton.outputs[1].capacity == 100 * CKB - 1000


def test_balance_into_existing_output() -> None:
    gateway = FakeGateway()
    gateway.insert_cell(OutPoint(b"\x01" * 32, 0), OutputCell.from_scripts(ALICE, capacity=200 * CKB))
    skeleton = TransactionSkeleton()
    skeleton.add_output(OutputCell.from_scripts(BOB, capacity=100 * CKB))

    skeleton.balance(gateway, 500, ScriptRef.from_script(ALICE), ChangeReceiver.to_output(0))

    assert len(skeleton.outputs) == 1
    assert skeleton.outputs[0].capacity == 200 * CKB - 500


def test_balance_without_funds_raises() -> None:
    gateway = FakeGateway()
    gateway.insert_cell(OutPoint(b"\x01" * 32, 0), OutputCell.from_scripts(ALICE, capacity=100 * CKB))
    skeleton = TransactionSkeleton()
    skeleton.add_output(OutputCell.from_scripts(BOB, capacity=150 * CKB))

    with pytest.raises(InsufficientFundsError):
        skeleton.balance(
            gateway, 1000, ScriptRef.from_script(ALICE), ChangeReceiver.to_script(ScriptRef.from_script(ALICE))
        )


def test_script_groups_collect_indices() -> None:
    skeleton = TransactionSkeleton().add_inputs([_input(1, 100), _input(2, 100, BOB), _input(3, 100)])
    skeleton.add_output(OutputCell.from_scripts(ALICE))

    assert skeleton.lock_script_groups(ALICE) == ([0, 2], [0])
    assert skeleton.lock_script_groups(ScriptRef.reference("nowhere")) == ([], [])


def test_from_transaction_round_trip() -> None:
    gateway = FakeGateway()
    header = fake_header(number=7, timestamp=1, epoch=0)
    gateway.insert_header(header)
    gateway.insert_cell(OutPoint(b"\x01" * 32, 0), OutputCell.from_scripts(ALICE, capacity=300 * CKB))
    gateway.insert_cell(OutPoint(b"\xd0" * 32, 0), OutputCell.from_scripts(ALICE, data=b"code"))

    skeleton = TransactionSkeleton()
    skeleton.add_input(InputCell.from_out_point(gateway, OutPoint(b"\x01" * 32, 0)))
    skeleton.add_dependency(DependencyCell.from_out_point(gateway, "code", OutPoint(b"\xd0" * 32, 0)))
    skeleton.add_header_dependency(HeaderDep.from_block_hash(gateway, header.hash()))
    skeleton.add_output(OutputCell.from_scripts(BOB, data=b"hi"))
    skeleton.add_witness(Witness(lock=b"\x01" * 65))
    tx = skeleton.to_transaction()

    rebuilt = TransactionSkeleton.from_transaction(gateway, tx)

    assert rebuilt.to_transaction() == tx
    assert rebuilt.cell_deps[0].name == "unknown-0"
    assert rebuilt.inputs[0].output.capacity == 300 * CKB


def test_resolved_transaction_expands_dep_groups() -> None:
    gateway = FakeGateway()
    members = [OutPoint(b"\x11" * 32, 0), OutPoint(b"\x12" * 32, 0)]
    for index, member in enumerate(members):
        gateway.insert_cell(member, OutputCell.from_scripts(ALICE, data=bytes([index]) * 4))
    group_point = OutPoint(b"\x13" * 32, 0)
    gateway.insert_cell(
        group_point,
        OutputCell.from_scripts(ALICE, data=OUT_POINT_VEC.encode([m.molecule() for m in members])),
    )
    skeleton = TransactionSkeleton()
    skeleton.add_dependency(
        DependencyCell.from_out_point(gateway, "group", group_point, DEP_TYPE_DEP_GROUP)
    )

    resolved = skeleton.to_resolved_transaction(gateway)

    assert [cell.out_point for cell in resolved.resolved_cell_deps] == members
    assert resolved.resolved_cell_deps[1].cell.data == b"\x01" * 4
    assert [cell.out_point for cell in resolved.resolved_dep_groups] == [group_point]


def test_submit_without_confirmations_returns_immediately() -> None:
    gateway = FakeGateway()
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    tx_hash = skeleton.submit_and_await(gateway)

    assert tx_hash == skeleton.tx_hash()
    assert gateway.sent_transaction() == skeleton.to_transaction()


def test_submit_waits_for_confirmations() -> None:
    gateway = ScriptedGateway(
        [("pending", None, 0), ("committed", 10, 10), ("committed", 10, 11), ("committed", 10, 12)]
    )
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    tx_hash = skeleton.submit_and_await(gateway, confirmations=2, poll_interval=0)

    assert tx_hash == skeleton.tx_hash()
    assert gateway.script == []


def test_submit_surfaces_rejection() -> None:
    gateway = ScriptedGateway([("rejected", None, 0)], reason="Resolve failed")
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    with pytest.raises(TransactionRejectedError, match="Resolve failed"):
        skeleton.submit_and_await(gateway, confirmations=1, poll_interval=0)


def test_submit_times_out() -> None:
    gateway = FakeGateway()
    skeleton = TransactionSkeleton().add_input(_input(1, 100))

    with pytest.raises(ConfirmationTimeoutError):
        skeleton.submit_and_await(gateway, confirmations=1, timeout=0.01, poll_interval=0.005)


def test_witness_bytes_survive_round_trip() -> None:
    assert Witness.from_bytes(b"") == Witness()
    assert Witness.from_bytes(b"\x01\x02").plain == b"\x01\x02"
    assert Witness.from_bytes(Witness(lock=b"\x05").to_bytes()) == Witness(lock=b"\x05")
    assert Transaction().raw.inputs == ()
    assert CellOutput(0, ALICE).type is None


def test_rehydrated_witnesses_keep_their_exact_bytes() -> None:
    absent = WitnessArgs().molecule()
    empty_lock = WitnessArgs(lock=b"", input_type=b"\x01").molecule()
    tx = Transaction(witnesses=(absent, empty_lock, b""))

    rebuilt = TransactionSkeleton.from_transaction(FakeGateway(), tx)

    assert rebuilt.to_transaction().witnesses == (absent, empty_lock, b"")
    assert rebuilt.witnesses[0].keep_table
    assert rebuilt.witnesses[1].plain == empty_lock
    assert rebuilt.to_transaction().hash() == tx.hash()

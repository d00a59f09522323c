from __future__ import annotations

import pytest

from cellforge.cells import OutputCell
from cellforge.errors import NotFoundError
from cellforge.fake import FakeGateway
from cellforge.operation import Log, LogKey
from cellforge.operations import (
    AddClusterCelldepByClusterId,
    AddClusterOutputCell,
    AddInputCell,
    AddOutputCellByInputIndex,
    AddSporeActions,
    AddSporeInputCellBySporeId,
    AddSporeOutputCell,
    ClusterAuthorityMode,
)
from cellforge.operations.spore import (
    CLUSTER_NAME,
    SPORE_NAME,
    SporeActionKind,
    make_cluster_data,
    make_spore_data,
    parse_actions,
    parse_cluster_data,
    parse_spore_data,
)
from cellforge.script_ref import ScriptRef
from cellforge.simulation import AddFakeContractCelldep
from cellforge.skeleton import TransactionSkeleton
from cellforge.types import HASH_TYPE_DATA1, HASH_TYPE_TYPE, OutPoint, Script, blake2b_256

ALICE = Script(b"\xaa" * 32, HASH_TYPE_TYPE, b"\x01" * 20)
BOB = Script(b"\xaa" * 32, HASH_TYPE_TYPE, b"\x02" * 20)
SPORE_CODE = b"fake spore contract"
CLUSTER_CODE = b"fake cluster contract"
SPORE_ID = b"\x5a" * 32
CLUSTER_ID = b"\xc1" * 32
CKB = 10**8


def _spore_type(spore_id: bytes) -> Script:
    return Script(blake2b_256(SPORE_CODE), HASH_TYPE_DATA1, spore_id)


def _cluster_type(cluster_id: bytes) -> Script:
    return Script(blake2b_256(CLUSTER_CODE), HASH_TYPE_DATA1, cluster_id)


def _setup() -> tuple:
    gateway = FakeGateway()
    gateway.insert_cell(OutPoint(b"\x01" * 32, 0), OutputCell.from_scripts(ALICE, capacity=1000 * CKB))
    gateway.insert_cell(
        OutPoint(b"\x02" * 32, 0),
        OutputCell.from_scripts(ALICE, _spore_type(SPORE_ID), make_spore_data("text/plain", b"hi")),
    )
    gateway.insert_cell(
        OutPoint(b"\x03" * 32, 0),
        OutputCell.from_scripts(BOB, _cluster_type(CLUSTER_ID), make_cluster_data("club", b"")),
    )
    skeleton = TransactionSkeleton()
    AddFakeContractCelldep(SPORE_NAME, SPORE_CODE)(gateway, skeleton, Log())
    AddFakeContractCelldep(CLUSTER_NAME, CLUSTER_CODE)(gateway, skeleton, Log())
    return gateway, skeleton


def _recorded_actions(skeleton: TransactionSkeleton) -> list:
    witness = skeleton.witnesses[-1]
    assert witness.is_plain
    return parse_actions(witness.plain)


def test_spore_data_layout() -> None:
    data = make_spore_data("image/png", b"\x89PNG", CLUSTER_ID)

    assert parse_spore_data(data) == ("image/png", b"\x89PNG", CLUSTER_ID)
    assert parse_spore_data(make_spore_data("text/plain", b""))[2] is None
    assert parse_cluster_data(make_cluster_data("club", b"about")) == ("club", b"about")


def test_mint_spore_logs_new_id() -> None:
    gateway, skeleton = _setup()
    log = Log()
    AddInputCell(ScriptRef.from_script(ALICE))(gateway, skeleton, log)

    AddSporeOutputCell(ScriptRef.from_script(BOB), "text/plain", b"hello")(gateway, skeleton, log)
    AddSporeActions()(gateway, skeleton, log)

    spore_id = log.last(LogKey.NEW_SPORE_ID)
    assert spore_id == skeleton.derive_unique_id(0)
    minted = skeleton.outputs[0]
    assert minted.type == _spore_type(spore_id)
    assert minted.lock == BOB
    assert parse_spore_data(minted.data) == ("text/plain", b"hello", None)
    (action,) = _recorded_actions(skeleton)
    assert action.kind is SporeActionKind.MINT_SPORE
    assert action.unique_id == spore_id
    assert action.script_hash == minted.type.hash()


def test_transfer_spore_records_one_transfer() -> None:
    gateway, skeleton = _setup()

    AddSporeInputCellBySporeId(SPORE_ID, check_owner=ScriptRef.from_script(ALICE))(
        gateway, skeleton, Log()
    )
    AddOutputCellByInputIndex(lock_script=ScriptRef.from_script(BOB))(gateway, skeleton, Log())
    AddSporeActions()(gateway, skeleton, Log())

    assert skeleton.outputs[0].lock == BOB
    assert skeleton.outputs[0].type == _spore_type(SPORE_ID)
    actions = _recorded_actions(skeleton)
    assert [action.kind for action in actions] == [SporeActionKind.TRANSFER_SPORE]
    assert actions[0].unique_id == SPORE_ID


def test_burn_spore() -> None:
    gateway, skeleton = _setup()

    AddSporeInputCellBySporeId(SPORE_ID)(gateway, skeleton, Log())
    AddOutputCellByInputIndex(clear_type=True, data=b"")(gateway, skeleton, Log())
    AddSporeActions()(gateway, skeleton, Log())

    (action,) = _recorded_actions(skeleton)
    assert action.kind is SporeActionKind.BURN_SPORE


def test_spore_owner_mismatch_is_not_found() -> None:
    gateway, skeleton = _setup()

    with pytest.raises(NotFoundError):
        AddSporeInputCellBySporeId(SPORE_ID, check_owner=ScriptRef.from_script(BOB))(
            gateway, skeleton, Log()
        )
    with pytest.raises(NotFoundError):
        AddSporeInputCellBySporeId(b"\x00" * 32)(gateway, skeleton, Log())


def test_create_cluster() -> None:
    gateway, skeleton = _setup()
    log = Log()
    AddInputCell(ScriptRef.from_script(ALICE))(gateway, skeleton, log)

    AddClusterOutputCell(ScriptRef.from_script(ALICE), "club", b"members only")(gateway, skeleton, log)
    AddSporeActions()(gateway, skeleton, log)

    cluster_id = log.last(LogKey.NEW_CLUSTER_ID)
    assert skeleton.outputs[0].type == _cluster_type(cluster_id)
    assert parse_cluster_data(skeleton.outputs[0].data) == ("club", b"members only")
    (action,) = _recorded_actions(skeleton)
    assert action.kind is SporeActionKind.MINT_CLUSTER


def test_cluster_cell_authority_moves_cluster_through() -> None:
    gateway, skeleton = _setup()
    log = Log()

    AddClusterCelldepByClusterId(CLUSTER_ID, ClusterAuthorityMode.CLUSTER_CELL)(gateway, skeleton, log)
    AddSporeActions()(gateway, skeleton, log)

    assert log.last(LogKey.CLUSTER_CELL_OWNER_LOCK) == BOB.molecule()
    assert skeleton.inputs[0].output.type == _cluster_type(CLUSTER_ID)
    assert skeleton.outputs[0].type == _cluster_type(CLUSTER_ID)
    assert skeleton.get_dependency_by_name("cluster-0x" + CLUSTER_ID.hex()) is not None
    (action,) = _recorded_actions(skeleton)
    assert action.kind is SporeActionKind.TRANSFER_CLUSTER


def test_lock_proxy_authority_moves_owner_cell() -> None:
    gateway, skeleton = _setup()
    gateway.insert_cell(OutPoint(b"\x04" * 32, 0), OutputCell.from_scripts(BOB, capacity=100 * CKB))

    AddClusterCelldepByClusterId(CLUSTER_ID, ClusterAuthorityMode.LOCK_PROXY)(gateway, skeleton, Log())

    assert skeleton.inputs[0].output.lock == BOB
    assert skeleton.inputs[0].output.type is None
    assert skeleton.outputs[0].lock == BOB


def test_no_spore_cells_means_no_witness() -> None:
    gateway, skeleton = _setup()

    AddSporeActions()(gateway, skeleton, Log())

    assert skeleton.witnesses == []

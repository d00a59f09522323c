from __future__ import annotations

import pytest

from cellforge.types import (
    DEP_TYPE_DEP_GROUP,
    HASH_TYPE_DATA1,
    HASH_TYPE_TYPE,
    SINCE_ABSOLUTE_EPOCH_FLAG,
    CellDep,
    CellInput,
    CellOutput,
    OutPoint,
    RawTransaction,
    Script,
    Transaction,
    absolute_epoch_since,
    ckb_to_shannons,
    dao_decode,
    dao_encode,
    epoch_decode,
    epoch_encode,
)

LOCK = Script(b"\x11" * 32, HASH_TYPE_TYPE, b"\x22" * 20)
DAO_TYPE = Script(b"\x33" * 32, HASH_TYPE_TYPE)


def _sample_transaction() -> Transaction:
    raw = RawTransaction(
        cell_deps=(CellDep(OutPoint(b"\x01" * 32, 0), DEP_TYPE_DEP_GROUP),),
        header_deps=(b"\x02" * 32,),
        inputs=(CellInput(OutPoint(b"\x03" * 32, 1), since=5),),
        outputs=(
            CellOutput(100 * 10**8, LOCK),
            CellOutput(200 * 10**8, LOCK, Script(b"\x44" * 32, HASH_TYPE_DATA1, b"id")),
        ),
        outputs_data=(b"", b"payload"),
    )
    return Transaction(raw, (b"", b"\xaa\xbb"))


def test_transaction_molecule_round_trip() -> None:
    tx = _sample_transaction()
    decoded = Transaction.molecule_decode(tx.molecule())

    assert decoded == tx
    assert decoded.hash() == tx.hash()
    assert len(tx.hash()) == 32


def test_transaction_rpc_round_trip_uses_hex_strings() -> None:
    tx = _sample_transaction()
    payload = tx.rpc()

    assert payload["inputs"][0]["since"] == "0x5"
    assert payload["cell_deps"][0]["dep_type"] == "dep_group"
    assert payload["outputs"][1]["type"]["hash_type"] == "data1"
    assert payload["outputs"][0]["type"] is None
    assert Transaction.rpc_decode(payload) == tx


def test_witnesses_do_not_change_the_hash() -> None:
    tx = _sample_transaction()
    other = Transaction(tx.raw, (b"\x01",))
    assert other.hash() == tx.hash()


def test_occupied_capacity_counts_scripts_and_data() -> None:
    assert CellOutput(0, LOCK).occupied_capacity() == 61 * 10**8
    assert CellOutput(0, LOCK, DAO_TYPE).occupied_capacity(bytes(8)) == 102 * 10**8


def test_epoch_packing() -> None:
    packed = epoch_encode(185, 100, 1000)

    assert packed == (1000 << 40) | (100 << 24) | 185
    assert epoch_decode(packed) == (185, 100, 1000)
    assert absolute_epoch_since(185, 100, 1000) == SINCE_ABSOLUTE_EPOCH_FLAG | packed
    with pytest.raises(ValueError):
        epoch_encode(1 << 24, 0, 1)


def test_dao_field_split() -> None:
    dao = dao_encode(1, 10**16, 3, 4)
    assert len(dao) == 32
    assert dao_decode(dao) == (1, 10**16, 3, 4)


def test_ckb_to_shannons_keeps_fractions() -> None:
    assert ckb_to_shannons("100.5") == 10_050_000_000
    assert ckb_to_shannons(61) == 61 * 10**8

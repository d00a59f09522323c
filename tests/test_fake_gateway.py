from __future__ import annotations

import pytest

from cellforge.cells import HeaderDep, OutputCell
from cellforge.config import Network
from cellforge.errors import NotFoundError
from cellforge.fake import FakeGateway
from cellforge.rpc_client import CellCursor, SearchFilter, SearchKey
from cellforge.simulation import fake_header
from cellforge.types import HASH_TYPE_TYPE, OutPoint, Script, Transaction

ALICE = Script(b"\xaa" * 32, HASH_TYPE_TYPE, b"\x01" * 20)
BOB = Script(b"\xaa" * 32, HASH_TYPE_TYPE, b"\x02" * 20)
TOKEN = Script(b"\xbb" * 32, HASH_TYPE_TYPE, b"token")


def _gateway_with_cells(count: int, lock: Script = ALICE) -> FakeGateway:
    gateway = FakeGateway()
    for index in range(count):
        gateway.insert_cell(
            OutPoint(bytes([index + 1]) * 32, 0),
            OutputCell.from_scripts(lock, capacity=(100 + index) * 10**8),
        )
    return gateway


def test_cursor_pages_through_all_matches() -> None:
    gateway = _gateway_with_cells(5)
    cursor = CellCursor(gateway, SearchKey(ALICE), page_size=2)

    capacities = [cell.output.capacity // 10**8 for cell in cursor]

    assert capacities == [100, 101, 102, 103, 104]
    assert cursor.exhausted
    assert cursor.next() is None


def test_cursor_predicate_skips_rejected_pages() -> None:
    gateway = _gateway_with_cells(6)
    cursor = CellCursor(
        gateway,
        SearchKey(ALICE),
        predicate=lambda cell: cell.output.capacity >= 104 * 10**8,
        page_size=2,
    )

    first = cursor.next_batch(2)

    assert first is not None
    assert [cell.output.capacity // 10**8 for cell in first] == [104, 105]
    assert cursor.next_batch(2) is None


def test_exact_search_ignores_other_locks() -> None:
    gateway = _gateway_with_cells(2)
    gateway.insert_cell(OutPoint(b"\x09" * 32, 0), OutputCell.from_scripts(BOB))

    page = gateway.get_cells(SearchKey(BOB), 10, None)

    assert len(page.objects) == 1
    assert page.objects[0].output.lock == BOB


def test_prefix_search_matches_args_prefix() -> None:
    gateway = _gateway_with_cells(1)
    gateway.insert_cell(OutPoint(b"\x09" * 32, 0), OutputCell.from_scripts(BOB))
    prefix = Script(ALICE.code_hash, HASH_TYPE_TYPE, b"")

    page = gateway.get_cells(SearchKey(prefix, script_search_mode="prefix"), 10, None)

    assert {cell.output.lock for cell in page.objects} == {ALICE, BOB}


def test_filters_on_type_script_and_data() -> None:
    gateway = FakeGateway()
    gateway.insert_cell(OutPoint(b"\x01" * 32, 0), OutputCell.from_scripts(ALICE))
    gateway.insert_cell(
        OutPoint(b"\x02" * 32, 0), OutputCell.from_scripts(ALICE, TOKEN, b"\x10\x00")
    )
    gateway.insert_cell(
        OutPoint(b"\x03" * 32, 0), OutputCell.from_scripts(ALICE, TOKEN, b"\x20\x00")
    )

    plain = gateway.get_cells(
        SearchKey(ALICE, filter=SearchFilter(script_len_range=(0, 1))), 10, None
    )
    tokens = gateway.get_cells(
        SearchKey(
            ALICE,
            filter=SearchFilter(script=TOKEN, output_data=b"\x20", output_data_filter_mode="prefix"),
        ),
        10,
        None,
    )
    by_type = gateway.get_cells(SearchKey(TOKEN, script_type="type"), 10, None)

    assert [cell.out_point.tx_hash[0] for cell in plain.objects] == [1]
    assert [cell.out_point.tx_hash[0] for cell in tokens.objects] == [3]
    assert len(by_type.objects) == 2


def test_unsupported_search_mode_is_rejected() -> None:
    gateway = _gateway_with_cells(1)
    search_key = SearchKey(ALICE)
    search_key.script_search_mode = "partial"

    with pytest.raises(ValueError):
        gateway.get_cells(search_key, 10, None)


def test_cell_inserted_with_header_yields_header_dep() -> None:
    gateway = FakeGateway()
    header = fake_header(number=42, timestamp=1000, epoch=0)
    out_point = OutPoint(b"\x05" * 32, 0)
    gateway.insert_cell(out_point, OutputCell.from_scripts(ALICE), header=header)

    header_dep = HeaderDep.from_out_point(gateway, out_point)

    assert header_dep.block_hash == header.hash()
    assert header_dep.header.number == 42
    with pytest.raises(NotFoundError):
        HeaderDep.from_out_point(gateway, OutPoint(b"\x06" * 32, 0))


def test_send_transaction_marks_pending() -> None:
    gateway = FakeGateway(Network.FAKE)
    tx = Transaction()

    tx_hash = gateway.send_transaction(tx)

    status = gateway.get_transaction(tx_hash)
    assert status is not None
    assert status.tx_status.status == "pending"
    assert gateway.sent_transaction() == tx


def test_removed_cell_is_no_longer_live() -> None:
    gateway = _gateway_with_cells(1)
    out_point = OutPoint(b"\x01" * 32, 0)
    assert gateway.get_live_cell(out_point, True) is not None

    gateway.remove_cell(out_point)

    assert gateway.get_live_cell(out_point, True) is None

"""Ready-made instructions for common transactions.

Every builder takes addresses and returns an :class:`Instruction` that can be
handed to a :class:`~cellforge.operation.TransactionCalculator`. Builders that
accept a ``key`` also balance the transaction against the signer and sign it;
without a key the caller is expected to merge :func:`balance_and_sign` (or its
own balancing) afterwards. Unsigned spore and cluster builders leave out
:class:`~cellforge.operations.spore.AddSporeActions`; push it after balancing
so the action witness follows every input witness.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .operation import Instruction, Operation
from .operations import (
    AddClusterInputCellByClusterId,
    AddClusterOutputCell,
    AddDaoDepositOutputCell,
    AddDaoWithdrawPhaseOneCells,
    AddDaoWithdrawPhaseTwoCells,
    AddInputCellByAddress,
    AddOutputCell,
    AddOutputCellByInputIndex,
    AddSecp256k1SighashCellDep,
    AddSecp256k1SighashSignatures,
    AddSporeActions,
    AddSporeInputCellBySporeId,
    AddSporeOutputCell,
    BalanceTransaction,
    ClusterAuthorityMode,
)
from .script_ref import ScriptRef
from .signing import Secp256k1Key
from .skeleton import ChangeReceiver

U64_MAX = 2**64 - 1


@dataclass
class Spore:
    """A spore to mint; ``owner`` defaults to the minter."""

    content_type: str
    content: bytes
    owner: Optional[str] = None
    cluster_id: Optional[bytes] = None


@dataclass
class Cluster:
    """A cluster to mint; ``owner`` defaults to the minter."""

    name: str
    description: bytes = b""
    owner: Optional[str] = None


def balance_and_sign(signer: str, key: Secp256k1Key, extra_fee_rate: int = 0) -> Instruction:
    """Balance with ``signer``'s capacity, send the change back to it and sign."""

    return Instruction(
        [
            BalanceTransaction(
                balancer=ScriptRef.from_address(signer),
                change_receiver=ChangeReceiver.to_address(signer),
                extra_fee_rate=extra_fee_rate,
            ),
            AddSecp256k1SighashSignatures(keys=[key]),
        ]
    )


def secp256k1_sighash_transfer(
    from_address: str,
    to_address: str,
    capacity: int,
    extra_fee_rate: int = 0,
    key: Optional[Secp256k1Key] = None,
) -> Instruction:
    """Send exactly ``capacity`` shannons from ``from_address`` to ``to_address``."""

    transfer = Instruction(
        [
            AddSecp256k1SighashCellDep(),
            AddInputCellByAddress(from_address),
            AddOutputCell(
                ScriptRef.from_address(to_address),
                capacity=capacity,
                absolute_capacity=True,
            ),
        ]
    )
    if key is not None:
        transfer.merge(balance_and_sign(from_address, key, extra_fee_rate))
    return transfer


def dao_deposit(operator: str, capacity: int) -> Instruction:
    return Instruction(
        [
            AddSecp256k1SighashCellDep(),
            AddDaoDepositOutputCell(ScriptRef.from_address(operator), capacity),
        ]
    )


def dao_withdraw_phase_one(
    operator: str,
    maximal_capacity: Optional[int] = None,
    upperbound_timestamp: Optional[int] = None,
    transfer_to: Optional[str] = None,
) -> Instruction:
    """Mark ``operator``'s deposits as withdrawing.

    Without a bound every deposit is eligible; ``upperbound_timestamp`` is in
    milliseconds, as in block headers.
    """

    return Instruction(
        [
            AddSecp256k1SighashCellDep(),
            AddDaoWithdrawPhaseOneCells(
                maximal_withdraw_capacity=U64_MAX if maximal_capacity is None else maximal_capacity,
                upperbound_timestamp=U64_MAX if upperbound_timestamp is None else upperbound_timestamp,
                owner=ScriptRef.from_address(operator),
                transfer_to=ScriptRef.from_address(transfer_to) if transfer_to else None,
            ),
        ]
    )


def dao_withdraw_phase_two(
    operator: str,
    maximal_capacity: Optional[int] = None,
    transfer_to: Optional[str] = None,
) -> Instruction:
    return Instruction(
        [
            AddSecp256k1SighashCellDep(),
            AddDaoWithdrawPhaseTwoCells(
                maximal_withdraw_capacity=U64_MAX if maximal_capacity is None else maximal_capacity,
                owner=ScriptRef.from_address(operator),
                transfer_to=ScriptRef.from_address(transfer_to) if transfer_to else None,
            ),
        ]
    )


def _finish_spore_instruction(
    instruction: Instruction,
    signer: str,
    key: Optional[Secp256k1Key],
    extra_fee_rate: int,
) -> Instruction:
    # The action witness goes after every input witness, so balancing must run first.
    # Without a key the caller balances and then pushes AddSporeActions itself.
    if key is None:
        return instruction
    instruction.push(
        BalanceTransaction(
            balancer=ScriptRef.from_address(signer),
            change_receiver=ChangeReceiver.to_address(signer),
            extra_fee_rate=extra_fee_rate,
        )
    )
    instruction.push(AddSporeActions())
    return instruction.push(AddSecp256k1SighashSignatures(keys=[key]))


def mint_spores(
    minter: str,
    spores: Sequence[Spore],
    authority_mode: ClusterAuthorityMode = ClusterAuthorityMode.CLUSTER_CELL,
    key: Optional[Secp256k1Key] = None,
    extra_fee_rate: int = 0,
) -> Instruction:
    """Mint ``spores`` funded by ``minter``; their ids are logged as ``NEW_SPORE_ID``."""

    minter_lock = ScriptRef.from_address(minter)
    instruction = Instruction([AddSecp256k1SighashCellDep(), AddInputCellByAddress(minter)])
    for spore in spores:
        owner = ScriptRef.from_address(spore.owner) if spore.owner else minter_lock
        instruction.push(
            AddSporeOutputCell(
                lock_script=owner,
                content_type=spore.content_type,
                content=spore.content,
                cluster_id=spore.cluster_id,
                authority_mode=authority_mode,
            )
        )
    return _finish_spore_instruction(instruction, minter, key, extra_fee_rate)


def transfer_spores(
    owner: str,
    transfers: Sequence[Tuple[str, bytes]],
    key: Optional[Secp256k1Key] = None,
    extra_fee_rate: int = 0,
) -> Instruction:
    """Move each ``(receiver address, spore id)`` pair away from ``owner``."""

    owner_lock = ScriptRef.from_address(owner)
    instruction = Instruction([AddSecp256k1SighashCellDep()])
    for receiver, spore_id in transfers:
        instruction.push(AddSporeInputCellBySporeId(spore_id, check_owner=owner_lock))
        instruction.push(AddOutputCellByInputIndex(lock_script=ScriptRef.from_address(receiver)))
    return _finish_spore_instruction(instruction, owner, key, extra_fee_rate)


def burn_spores(
    owner: str,
    spore_ids: Sequence[bytes],
    key: Optional[Secp256k1Key] = None,
    extra_fee_rate: int = 0,
) -> Instruction:
    owner_lock = ScriptRef.from_address(owner)
    instruction = Instruction([AddSecp256k1SighashCellDep()])
    for spore_id in spore_ids:
        instruction.push(AddSporeInputCellBySporeId(spore_id, check_owner=owner_lock))
    return _finish_spore_instruction(instruction, owner, key, extra_fee_rate)


def mint_clusters(
    minter: str,
    clusters: Sequence[Cluster],
    key: Optional[Secp256k1Key] = None,
    extra_fee_rate: int = 0,
) -> Instruction:
    minter_lock = ScriptRef.from_address(minter)
    operations: List[Operation] = [AddSecp256k1SighashCellDep(), AddInputCellByAddress(minter)]
    for cluster in clusters:
        owner = ScriptRef.from_address(cluster.owner) if cluster.owner else minter_lock
        operations.append(AddClusterOutputCell(owner, cluster.name, cluster.description))
    return _finish_spore_instruction(Instruction(operations), minter, key, extra_fee_rate)


def transfer_clusters(
    owner: str,
    transfers: Sequence[Tuple[str, bytes]],
    key: Optional[Secp256k1Key] = None,
    extra_fee_rate: int = 0,
) -> Instruction:
    instruction = Instruction([AddSecp256k1SighashCellDep()])
    for receiver, cluster_id in transfers:
        instruction.push(AddClusterInputCellByClusterId(cluster_id))
        instruction.push(AddOutputCellByInputIndex(lock_script=ScriptRef.from_address(receiver)))
    return _finish_spore_instruction(instruction, owner, key, extra_fee_rate)

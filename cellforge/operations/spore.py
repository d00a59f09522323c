"""Spore (on-chain digital objects) and Cluster operations.

Spore and cluster cells are identified by the args of their type script,
which is the unique id derived when the cell is minted.
:class:`AddSporeActions` compares the spore and cluster cells on both sides
of the skeleton and records the resulting mint, transfer and burn actions in
one plain witness.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .. import molecule
from ..cells import DependencyCell, InputCell, OutputCell, Witness
from ..config import Network
from ..errors import NotFoundError, ReferenceUnresolvedError
from ..operation import Log, LogKey, Operation
from ..rpc_client import CellCursor, ChainGateway, SearchKey
from ..script_ref import ScriptRef
from ..skeleton import TransactionSkeleton
from ..types import DEP_TYPE_CODE, Script, hex_decode, hex_encode
from .basic import AddDeployedCellDep, AddOutputCell

logger = logging.getLogger(__name__)

SPORE_NAME = "spore"
CLUSTER_NAME = "cluster"

SPORE_DEPLOYMENTS = {
    Network.MAINNET: hex_decode("0x96b198fb5ddbd1eed57ed667068f1f1e55d07907b4c0dbd38675a69ea1b69824"),
    Network.TESTNET: hex_decode("0x5e8d2a517d50fd4bb4d01737a7952a1f1d35c8afc77240695bb569cd7d9d5a1f"),
}
SPORE_CODE_HASHES = {
    Network.MAINNET: hex_decode("0x4a4dce1df3dffff7f8b2cd7dff7303df3b6150c9788cb75dcf6747247132b9f5"),
    Network.TESTNET: hex_decode("0x685a60219309029d01310311dba953d67029170ca4848a4ff638e57002130a0d"),
}
CLUSTER_DEPLOYMENTS = {
    Network.MAINNET: hex_decode("0xe464b7fb9311c5e2820e61c99afc615d6b98bdefbe318c34868c010cbd0dc938"),
    Network.TESTNET: hex_decode("0xcebb174d6e300e26074aea2f5dbd7f694bb4fe3de52b6dfe205e54f90164510a"),
}
CLUSTER_CODE_HASHES = {
    Network.MAINNET: hex_decode("0x7366a61534fa7c7e6225ecc0d828ea3b5366adec2b58206f2ee84995fe030075"),
    Network.TESTNET: hex_decode("0x0bbe768b519d8ea7b96d58f1182eb7e6ef96c541fbd9526975077ee09f049058"),
}

# Molecule schemas of the spore contract.
SPORE_DATA = molecule.Table([molecule.Bytes, molecule.Bytes, molecule.BytesOpt])
CLUSTER_DATA_V2 = molecule.Table([molecule.Bytes, molecule.Bytes, molecule.BytesOpt])
ADDRESS = molecule.Union({0: molecule.Raw()})
MINT_SPORE = molecule.Table([molecule.Byte32, molecule.Raw(), molecule.Byte32])
TRANSFER_SPORE = molecule.Table([molecule.Byte32, molecule.Raw(), molecule.Raw()])
BURN_SPORE = molecule.Table([molecule.Byte32, molecule.Raw()])
MINT_CLUSTER = molecule.Table([molecule.Byte32, molecule.Raw(), molecule.Byte32])
TRANSFER_CLUSTER = molecule.Table([molecule.Byte32, molecule.Raw(), molecule.Raw()])
ACTION = molecule.Table([molecule.Byte32, molecule.Byte32, molecule.Bytes])
ACTION_VEC = molecule.DynVec(molecule.Raw())
MESSAGE = molecule.Table([molecule.Raw()])
SIGHASH_ALL = molecule.Table([molecule.Raw(), molecule.Bytes])
WITNESS_LAYOUT_SIGHASH_ALL = 0xFF000001
WITNESS_LAYOUT = molecule.Union({WITNESS_LAYOUT_SIGHASH_ALL: molecule.Raw()})


class SporeActionKind(int, Enum):
    MINT_SPORE = 0
    TRANSFER_SPORE = 1
    BURN_SPORE = 2
    MINT_CLUSTER = 3
    TRANSFER_CLUSTER = 4


SPORE_ACTION = molecule.Union(
    {
        SporeActionKind.MINT_SPORE.value: MINT_SPORE,
        SporeActionKind.TRANSFER_SPORE.value: TRANSFER_SPORE,
        SporeActionKind.BURN_SPORE.value: BURN_SPORE,
        SporeActionKind.MINT_CLUSTER.value: MINT_CLUSTER,
        SporeActionKind.TRANSFER_CLUSTER.value: TRANSFER_CLUSTER,
    }
)


class ClusterAuthorityMode(str, Enum):
    """How a spore minted into a cluster proves the cluster owner's consent."""

    LOCK_PROXY = "lock_proxy"
    CLUSTER_CELL = "cluster_cell"
    SKIP = "skip"


def make_spore_data(content_type: str, content: bytes, cluster_id: bytes | None = None) -> bytes:
    return SPORE_DATA.encode([content_type.encode("utf-8"), bytes(content), cluster_id])


def parse_spore_data(data: bytes) -> Tuple[str, bytes, Optional[bytes]]:
    content_type, content, cluster_id = SPORE_DATA.decode(data)
    return content_type.decode("utf-8"), content, cluster_id


def make_cluster_data(name: str, description: bytes) -> bytes:
    return CLUSTER_DATA_V2.encode([name.encode("utf-8"), bytes(description), None])


def parse_cluster_data(data: bytes) -> Tuple[str, bytes]:
    name, description, _ = CLUSTER_DATA_V2.decode(data)
    return name.decode("utf-8"), description


def spore_script(network: Network | str, args: bytes = b"") -> ScriptRef:
    network = Network(network)
    if network in SPORE_CODE_HASHES:
        return ScriptRef.code(SPORE_CODE_HASHES[network], args)
    return ScriptRef.reference(SPORE_NAME, args)


def cluster_script(network: Network | str, args: bytes = b"") -> ScriptRef:
    network = Network(network)
    if network in CLUSTER_CODE_HASHES:
        return ScriptRef.code(CLUSTER_CODE_HASHES[network], args)
    return ScriptRef.reference(CLUSTER_NAME, args)


def _address(script: Script) -> bytes:
    return ADDRESS.encode((0, script.molecule()))


@dataclass(frozen=True)
class SporeAction:
    """One decoded action record of a spore witness."""

    script_hash: bytes
    kind: SporeActionKind
    fields: Tuple[bytes, ...]

    @property
    def unique_id(self) -> bytes:
        return self.fields[0]


def pack_actions(actions: List[Tuple[Script, SporeActionKind, List[bytes]]]) -> bytes:
    """Pack ``(type script, kind, fields)`` triples into a ``WitnessLayout``."""

    packed = [
        ACTION.encode(
            [bytes(32), type_script.hash(), SPORE_ACTION.encode((kind.value, fields))]
        )
        for type_script, kind, fields in actions
    ]
    message = MESSAGE.encode([ACTION_VEC.encode(packed)])
    return WITNESS_LAYOUT.encode((WITNESS_LAYOUT_SIGHASH_ALL, SIGHASH_ALL.encode([message, b""])))


def parse_actions(witness: bytes) -> List[SporeAction]:
    layout_id, sighash_all = WITNESS_LAYOUT.decode(witness)
    if layout_id != WITNESS_LAYOUT_SIGHASH_ALL:
        raise molecule.MoleculeError(f"unexpected witness layout {layout_id:#x}")
    message, _seal = SIGHASH_ALL.decode(sighash_all)
    (action_vec,) = MESSAGE.decode(message)
    actions: List[SporeAction] = []
    for raw in ACTION_VEC.decode(action_vec):
        _info_hash, script_hash, data = ACTION.decode(raw)
        kind, fields = SPORE_ACTION.decode(data)
        actions.append(SporeAction(script_hash, SporeActionKind(kind), tuple(fields)))
    return actions


def _type_search_key(script: Script, with_data: bool = True) -> SearchKey:
    return SearchKey(script, script_type="type", script_search_mode="exact", with_data=with_data)


@dataclass
class AddSporeCelldep(Operation):
    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        AddDeployedCellDep(SPORE_NAME, SPORE_DEPLOYMENTS, 0, DEP_TYPE_CODE).run(gateway, skeleton, log)


@dataclass
class AddClusterCelldep(Operation):
    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        AddDeployedCellDep(CLUSTER_NAME, CLUSTER_DEPLOYMENTS, 0, DEP_TYPE_CODE).run(
            gateway, skeleton, log
        )


@dataclass
class AddClusterCelldepByClusterId(Operation):
    """Reference a cluster cell and satisfy its owner for minting into it.

    The cluster cell is added as a dep named ``cluster-<id>``. When its owner
    lock does not already appear on both sides of the skeleton, the lock is
    logged under :attr:`LogKey.CLUSTER_CELL_OWNER_LOCK` (it must sign) and the
    authority mode decides how the owner takes part: ``LOCK_PROXY`` moves one
    plain cell of the owner through the transaction, ``CLUSTER_CELL`` moves
    the cluster cell itself, ``SKIP`` does nothing.
    """

    cluster_id: bytes
    authority_mode: ClusterAuthorityMode = ClusterAuthorityMode.CLUSTER_CELL

    def _cluster_dep(self, gateway: ChainGateway, skeleton: TransactionSkeleton) -> DependencyCell:
        name = f"cluster-{hex_encode(self.cluster_id)}"
        dep = skeleton.get_dependency_by_name(name)
        if dep is not None:
            return dep
        type_script = cluster_script(gateway.network, self.cluster_id).to_script(skeleton)
        cell = CellCursor(gateway, _type_search_key(type_script)).next()
        if cell is None:
            raise NotFoundError(f"no cluster cell (id: {hex_encode(self.cluster_id)})")
        dep = DependencyCell.from_indexer_cell(name, cell, DEP_TYPE_CODE)
        skeleton.add_dependency(dep)
        return dep

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        dep = self._cluster_dep(gateway, skeleton)
        owner_lock = dep.output.lock
        inputs, outputs = skeleton.lock_script_groups(owner_lock)
        if inputs and outputs:
            return
        log.add(LogKey.CLUSTER_CELL_OWNER_LOCK, owner_lock.molecule())
        if self.authority_mode == ClusterAuthorityMode.LOCK_PROXY:
            owner = ScriptRef.from_script(owner_lock)
            skeleton.add_input_from_script(gateway, owner)
            skeleton.add_output_from_script(owner)
            skeleton.add_witness(Witness())
        elif self.authority_mode == ClusterAuthorityMode.CLUSTER_CELL:
            cluster_input = InputCell.from_dependency(dep)
            skeleton.add_input(cluster_input)
            skeleton.add_output(OutputCell(cluster_input.output.output, cluster_input.output.data))
            skeleton.add_witness(Witness())
            AddClusterCelldep().run(gateway, skeleton, log)
        else:
            logger.debug("Skipping cluster authority for %s", hex_encode(self.cluster_id))


@dataclass
class AddSporeInputCellBySporeId(Operation):
    """Spend the spore ``spore_id``, optionally requiring it to be owned by ``check_owner``."""

    spore_id: bytes
    check_owner: Optional[ScriptRef] = None

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        type_script = spore_script(gateway.network, self.spore_id).to_script(skeleton)
        cell = CellCursor(gateway, _type_search_key(type_script)).next()
        if cell is None:
            raise NotFoundError(f"no spore cell (id: {hex_encode(self.spore_id)})")
        spore_cell = InputCell.from_indexer_cell(cell)
        if self.check_owner is not None:
            owner = self.check_owner.to_script(skeleton)
            if spore_cell.output.lock != owner:
                raise NotFoundError(
                    f"spore cell (id: {hex_encode(self.spore_id)}) is not owned by the given lock"
                )
        skeleton.add_input(spore_cell)
        skeleton.add_witness(Witness())
        AddSporeCelldep().run(gateway, skeleton, log)


@dataclass
class AddSporeOutputCell(Operation):
    """Mint a spore, optionally into the cluster ``cluster_id``; logs ``NEW_SPORE_ID``."""

    lock_script: ScriptRef
    content_type: str
    content: bytes
    cluster_id: Optional[bytes] = None
    authority_mode: ClusterAuthorityMode = ClusterAuthorityMode.CLUSTER_CELL

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        data = make_spore_data(self.content_type, self.content, self.cluster_id)
        AddOutputCell(
            self.lock_script,
            spore_script(gateway.network),
            data=data,
            type_id=True,
        ).run(gateway, skeleton, log)
        spore_id = skeleton.derive_unique_id(len(skeleton.outputs) - 1)
        log.add(LogKey.NEW_SPORE_ID, spore_id)
        logger.info("Minting spore %s", hex_encode(spore_id))
        if self.cluster_id is not None:
            AddClusterCelldepByClusterId(self.cluster_id, self.authority_mode).run(
                gateway, skeleton, log
            )
        AddSporeCelldep().run(gateway, skeleton, log)


@dataclass
class AddClusterInputCellByClusterId(Operation):
    cluster_id: bytes

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        type_script = cluster_script(gateway.network, self.cluster_id).to_script(skeleton)
        cell = CellCursor(gateway, _type_search_key(type_script)).next()
        if cell is None:
            raise NotFoundError(f"no cluster cell (id: {hex_encode(self.cluster_id)})")
        skeleton.add_input(InputCell.from_indexer_cell(cell))
        skeleton.add_witness(Witness())
        AddClusterCelldep().run(gateway, skeleton, log)


@dataclass
class AddClusterOutputCell(Operation):
    """Create a cluster; logs ``NEW_CLUSTER_ID``."""

    lock_script: ScriptRef
    name: str
    description: bytes = b""

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        AddOutputCell(
            self.lock_script,
            cluster_script(gateway.network),
            data=make_cluster_data(self.name, self.description),
            type_id=True,
        ).run(gateway, skeleton, log)
        cluster_id = skeleton.derive_unique_id(len(skeleton.outputs) - 1)
        log.add(LogKey.NEW_CLUSTER_ID, cluster_id)
        logger.info("Creating cluster %s", hex_encode(cluster_id))
        AddClusterCelldep().run(gateway, skeleton, log)


def _code_hash(script: ScriptRef, skeleton: TransactionSkeleton) -> Optional[bytes]:
    try:
        return script.to_script(skeleton).code_hash
    except ReferenceUnresolvedError:
        return None


def _by_code_hash(cells: List[OutputCell], code_hash: bytes) -> List[Tuple[OutputCell, bytes]]:
    return [
        (cell, cell.type.args)
        for cell in cells
        if cell.type is not None and cell.type.code_hash == code_hash
    ]


@dataclass
class AddSporeActions(Operation):
    """Record spore and cluster actions implied by the skeleton in one plain witness.

    A spore or cluster present on both sides is a transfer, one only in the
    outputs is a mint and a spore only in the inputs is a burn. Clusters are
    never burnt.
    """

    def run(self, gateway: ChainGateway, skeleton: TransactionSkeleton, log: Log) -> None:
        inputs = [item.output for item in skeleton.inputs]
        outputs = list(skeleton.outputs)
        actions: List[Tuple[Script, SporeActionKind, List[bytes]]] = []

        spore_code_hash = _code_hash(spore_script(gateway.network), skeleton)
        if spore_code_hash is not None:
            actions += self._reconcile(
                _by_code_hash(inputs, spore_code_hash),
                _by_code_hash(outputs, spore_code_hash),
                SporeActionKind.MINT_SPORE,
                SporeActionKind.TRANSFER_SPORE,
                SporeActionKind.BURN_SPORE,
            )
        cluster_code_hash = _code_hash(cluster_script(gateway.network), skeleton)
        if cluster_code_hash is not None:
            actions += self._reconcile(
                _by_code_hash(inputs, cluster_code_hash),
                _by_code_hash(outputs, cluster_code_hash),
                SporeActionKind.MINT_CLUSTER,
                SporeActionKind.TRANSFER_CLUSTER,
                None,
            )
        if not actions:
            logger.warning("No spore or cluster cells in skeleton; no actions recorded")
            return
        counts: Dict[str, int] = {}
        for _, kind, _ in actions:
            counts[kind.name] = counts.get(kind.name, 0) + 1
        logger.debug("Recording spore actions %s", counts)
        skeleton.add_witness(Witness.new_plain(pack_actions(actions)))

    @staticmethod
    def _reconcile(
        inputs: List[Tuple[OutputCell, bytes]],
        outputs: List[Tuple[OutputCell, bytes]],
        mint: SporeActionKind,
        transfer: SporeActionKind,
        burn: Optional[SporeActionKind],
    ) -> List[Tuple[Script, SporeActionKind, List[bytes]]]:
        actions: List[Tuple[Script, SporeActionKind, List[bytes]]] = []
        remaining = list(outputs)
        for cell, unique_id in inputs:
            match = next(
                (i for i, (output, _) in enumerate(remaining) if output.type == cell.type), None
            )
            if match is not None:
                output, _ = remaining.pop(match)
                actions.append(
                    (output.type, transfer, [unique_id, _address(cell.lock), _address(output.lock)])
                )
            elif burn is not None:
                actions.append((cell.type, burn, [unique_id, _address(cell.lock)]))
        for output, unique_id in remaining:
            actions.append((output.type, mint, [unique_id, _address(output.lock), output.data_hash()]))
        return actions

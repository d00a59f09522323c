"""Wire primitives of the chain and their molecule / JSON-RPC codecs.

Every primitive knows how to serialize itself to molecule bytes
(``molecule``/``molecule_decode``) and to the ``0x``-hex JSON shape used by
the node RPC (``rpc``/``rpc_decode``).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from . import molecule

SHANNONS_PER_CKB = 10**8
HASH_PERSONALIZATION = b"ckb-default-hash"

HASH_TYPE_DATA = 0
HASH_TYPE_TYPE = 1
HASH_TYPE_DATA1 = 2
HASH_TYPE_DATA2 = 4

HASH_TYPE_NAMES: Dict[int, str] = {
    HASH_TYPE_DATA: "data",
    HASH_TYPE_TYPE: "type",
    HASH_TYPE_DATA1: "data1",
    HASH_TYPE_DATA2: "data2",
}
HASH_TYPE_CODES: Dict[str, int] = {name: code for code, name in HASH_TYPE_NAMES.items()}

DEP_TYPE_CODE = 0
DEP_TYPE_DEP_GROUP = 1

DEP_TYPE_NAMES: Dict[int, str] = {DEP_TYPE_CODE: "code", DEP_TYPE_DEP_GROUP: "dep_group"}
DEP_TYPE_CODES: Dict[str, int] = {name: code for code, name in DEP_TYPE_NAMES.items()}

TYPE_ID_CODE_HASH = bytes.fromhex(
    "00000000000000000000000000000000000000000000000000545950455f4944"
)

SINCE_ABSOLUTE_EPOCH_FLAG = 0x2000000000000000


def blake2b_256(data: bytes) -> bytes:
    """Chain-default blake2b-256 digest."""

    return hashlib.blake2b(bytes(data), digest_size=32, person=HASH_PERSONALIZATION).digest()


def new_blake2b() -> Any:
    return hashlib.blake2b(digest_size=32, person=HASH_PERSONALIZATION)


def hex_encode(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def hex_decode(value: str) -> bytes:
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def hex_int(value: int) -> str:
    return hex(int(value))


def int_decode(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass(frozen=True)
class Script:
    code_hash: bytes
    hash_type: int
    args: bytes = b""

    _CODEC = molecule.Table([molecule.Byte32, molecule.Byte, molecule.Bytes])

    def molecule(self) -> bytes:
        return self._CODEC.encode([self.code_hash, self.hash_type, self.args])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "Script":
        code_hash, hash_type, args = cls._CODEC.decode(data)
        return cls(code_hash, hash_type, args)

    def hash(self) -> bytes:
        return blake2b_256(self.molecule())

    def occupied_size(self) -> int:
        return 32 + 1 + len(self.args)

    def rpc(self) -> Dict[str, str]:
        return {
            "code_hash": hex_encode(self.code_hash),
            "hash_type": HASH_TYPE_NAMES[self.hash_type],
            "args": hex_encode(self.args),
        }

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "Script":
        return cls(
            code_hash=hex_decode(data["code_hash"]),
            hash_type=HASH_TYPE_CODES[data["hash_type"]],
            args=hex_decode(data["args"]),
        )


@dataclass(frozen=True)
class OutPoint:
    tx_hash: bytes
    index: int

    _CODEC = molecule.Struct([molecule.Byte32, molecule.U32])

    def molecule(self) -> bytes:
        return self._CODEC.encode([self.tx_hash, self.index])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "OutPoint":
        tx_hash, index = cls._CODEC.decode(data)
        return cls(tx_hash, index)

    def rpc(self) -> Dict[str, str]:
        return {"tx_hash": hex_encode(self.tx_hash), "index": hex_int(self.index)}

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "OutPoint":
        return cls(hex_decode(data["tx_hash"]), int_decode(data["index"]))

    def __str__(self) -> str:
        return f"{hex_encode(self.tx_hash)}:{self.index}"


OUT_POINT_VEC = molecule.FixVec(molecule.Raw(OutPoint._CODEC.size))


@dataclass(frozen=True)
class CellInput:
    previous_output: OutPoint
    since: int = 0

    _CODEC = molecule.Struct([molecule.U64, molecule.Raw(OutPoint._CODEC.size)])

    def molecule(self) -> bytes:
        return self._CODEC.encode([self.since, self.previous_output.molecule()])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "CellInput":
        since, out_point = cls._CODEC.decode(data)
        return cls(OutPoint.molecule_decode(out_point), since)

    def rpc(self) -> Dict[str, Any]:
        return {"since": hex_int(self.since), "previous_output": self.previous_output.rpc()}

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "CellInput":
        return cls(OutPoint.rpc_decode(data["previous_output"]), int_decode(data["since"]))


@dataclass(frozen=True)
class CellOutput:
    capacity: int
    lock: Script
    type: Optional[Script] = None

    _CODEC = molecule.Table([molecule.U64, molecule.Raw(), molecule.Option(molecule.Raw())])

    def molecule(self) -> bytes:
        type_bytes = self.type.molecule() if self.type is not None else None
        return self._CODEC.encode([self.capacity, self.lock.molecule(), type_bytes])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "CellOutput":
        capacity, lock, type_ = cls._CODEC.decode(data)
        return cls(
            capacity,
            Script.molecule_decode(lock),
            Script.molecule_decode(type_) if type_ is not None else None,
        )

    def occupied_capacity(self, data: bytes = b"") -> int:
        """Minimal capacity (in shannons) this output needs to hold ``data``."""

        size = 8 + self.lock.occupied_size() + len(data)
        if self.type is not None:
            size += self.type.occupied_size()
        return size * SHANNONS_PER_CKB

    def with_capacity(self, capacity: int) -> "CellOutput":
        return CellOutput(capacity, self.lock, self.type)

    def rpc(self) -> Dict[str, Any]:
        return {
            "capacity": hex_int(self.capacity),
            "lock": self.lock.rpc(),
            "type": self.type.rpc() if self.type is not None else None,
        }

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "CellOutput":
        type_ = data.get("type")
        return cls(
            int_decode(data["capacity"]),
            Script.rpc_decode(data["lock"]),
            Script.rpc_decode(type_) if type_ else None,
        )


@dataclass(frozen=True)
class CellDep:
    out_point: OutPoint
    dep_type: int = DEP_TYPE_CODE

    _CODEC = molecule.Struct([molecule.Raw(OutPoint._CODEC.size), molecule.Byte])

    def molecule(self) -> bytes:
        return self._CODEC.encode([self.out_point.molecule(), self.dep_type])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "CellDep":
        out_point, dep_type = cls._CODEC.decode(data)
        return cls(OutPoint.molecule_decode(out_point), dep_type)

    def rpc(self) -> Dict[str, Any]:
        return {"out_point": self.out_point.rpc(), "dep_type": DEP_TYPE_NAMES[self.dep_type]}

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "CellDep":
        return cls(OutPoint.rpc_decode(data["out_point"]), DEP_TYPE_CODES[data["dep_type"]])


@dataclass(frozen=True)
class WitnessArgs:
    lock: Optional[bytes] = None
    input_type: Optional[bytes] = None
    output_type: Optional[bytes] = None

    _CODEC = molecule.Table([molecule.BytesOpt, molecule.BytesOpt, molecule.BytesOpt])

    def molecule(self) -> bytes:
        return self._CODEC.encode([self.lock, self.input_type, self.output_type])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "WitnessArgs":
        lock, input_type, output_type = cls._CODEC.decode(data)
        return cls(lock, input_type, output_type)


@dataclass(frozen=True)
class Header:
    version: int
    compact_target: int
    timestamp: int
    number: int
    epoch: int
    parent_hash: bytes
    transactions_root: bytes
    proposals_hash: bytes
    extra_hash: bytes
    dao: bytes
    nonce: int = 0

    _RAW_CODEC = molecule.Struct(
        [
            molecule.U32,
            molecule.U32,
            molecule.U64,
            molecule.U64,
            molecule.U64,
            molecule.Byte32,
            molecule.Byte32,
            molecule.Byte32,
            molecule.Byte32,
            molecule.Byte32,
        ]
    )
    _CODEC = molecule.Struct([molecule.Raw(_RAW_CODEC.size), molecule.U128])

    def _raw_fields(self) -> List[Any]:
        return [
            self.version,
            self.compact_target,
            self.timestamp,
            self.number,
            self.epoch,
            self.parent_hash,
            self.transactions_root,
            self.proposals_hash,
            self.extra_hash,
            self.dao,
        ]

    def molecule(self) -> bytes:
        return self._CODEC.encode([self._RAW_CODEC.encode(self._raw_fields()), self.nonce])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "Header":
        raw, nonce = cls._CODEC.decode(data)
        return cls(*cls._RAW_CODEC.decode(raw), nonce=nonce)

    def hash(self) -> bytes:
        return blake2b_256(self.molecule())

    def rpc(self) -> Dict[str, str]:
        return {
            "version": hex_int(self.version),
            "compact_target": hex_int(self.compact_target),
            "timestamp": hex_int(self.timestamp),
            "number": hex_int(self.number),
            "epoch": hex_int(self.epoch),
            "parent_hash": hex_encode(self.parent_hash),
            "transactions_root": hex_encode(self.transactions_root),
            "proposals_hash": hex_encode(self.proposals_hash),
            "extra_hash": hex_encode(self.extra_hash),
            "dao": hex_encode(self.dao),
            "nonce": hex_int(self.nonce),
            "hash": hex_encode(self.hash()),
        }

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "Header":
        return cls(
            version=int_decode(data["version"]),
            compact_target=int_decode(data["compact_target"]),
            timestamp=int_decode(data["timestamp"]),
            number=int_decode(data["number"]),
            epoch=int_decode(data["epoch"]),
            parent_hash=hex_decode(data["parent_hash"]),
            transactions_root=hex_decode(data["transactions_root"]),
            proposals_hash=hex_decode(data["proposals_hash"]),
            extra_hash=hex_decode(data["extra_hash"]),
            dao=hex_decode(data["dao"]),
            nonce=int_decode(data.get("nonce", "0x0")),
        )


@dataclass(frozen=True)
class RawTransaction:
    version: int = 0
    cell_deps: Tuple[CellDep, ...] = ()
    header_deps: Tuple[bytes, ...] = ()
    inputs: Tuple[CellInput, ...] = ()
    outputs: Tuple[CellOutput, ...] = ()
    outputs_data: Tuple[bytes, ...] = ()

    _CODEC = molecule.Table(
        [
            molecule.U32,
            molecule.FixVec(molecule.Raw(CellDep._CODEC.size)),
            molecule.Byte32Vec,
            molecule.FixVec(molecule.Raw(CellInput._CODEC.size)),
            molecule.DynVec(molecule.Raw()),
            molecule.BytesVec,
        ]
    )

    def molecule(self) -> bytes:
        return self._CODEC.encode(
            [
                self.version,
                [dep.molecule() for dep in self.cell_deps],
                list(self.header_deps),
                [item.molecule() for item in self.inputs],
                [item.molecule() for item in self.outputs],
                list(self.outputs_data),
            ]
        )

    @classmethod
    def molecule_decode(cls, data: bytes) -> "RawTransaction":
        version, deps, header_deps, inputs, outputs, outputs_data = cls._CODEC.decode(data)
        return cls(
            version=version,
            cell_deps=tuple(CellDep.molecule_decode(item) for item in deps),
            header_deps=tuple(header_deps),
            inputs=tuple(CellInput.molecule_decode(item) for item in inputs),
            outputs=tuple(CellOutput.molecule_decode(item) for item in outputs),
            outputs_data=tuple(outputs_data),
        )

    def hash(self) -> bytes:
        return blake2b_256(self.molecule())


@dataclass(frozen=True)
class Transaction:
    raw: RawTransaction = field(default_factory=RawTransaction)
    witnesses: Tuple[bytes, ...] = ()

    _CODEC = molecule.Table([molecule.Raw(), molecule.BytesVec])

    def molecule(self) -> bytes:
        return self._CODEC.encode([self.raw.molecule(), list(self.witnesses)])

    @classmethod
    def molecule_decode(cls, data: bytes) -> "Transaction":
        raw, witnesses = cls._CODEC.decode(data)
        return cls(RawTransaction.molecule_decode(raw), tuple(witnesses))

    def hash(self) -> bytes:
        return self.raw.hash()

    def serialized_size(self) -> int:
        return len(self.molecule())

    def rpc(self) -> Dict[str, Any]:
        raw = self.raw
        return {
            "version": hex_int(raw.version),
            "cell_deps": [dep.rpc() for dep in raw.cell_deps],
            "header_deps": [hex_encode(item) for item in raw.header_deps],
            "inputs": [item.rpc() for item in raw.inputs],
            "outputs": [item.rpc() for item in raw.outputs],
            "outputs_data": [hex_encode(item) for item in raw.outputs_data],
            "witnesses": [hex_encode(item) for item in self.witnesses],
        }

    @classmethod
    def rpc_decode(cls, data: Dict[str, Any]) -> "Transaction":
        raw = RawTransaction(
            version=int_decode(data["version"]),
            cell_deps=tuple(CellDep.rpc_decode(item) for item in data["cell_deps"]),
            header_deps=tuple(hex_decode(item) for item in data["header_deps"]),
            inputs=tuple(CellInput.rpc_decode(item) for item in data["inputs"]),
            outputs=tuple(CellOutput.rpc_decode(item) for item in data["outputs"]),
            outputs_data=tuple(hex_decode(item) for item in data["outputs_data"]),
        )
        return cls(raw, tuple(hex_decode(item) for item in data["witnesses"]))


def epoch_encode(number: int, index: int, length: int) -> int:
    """Pack an epoch-with-fraction value: ``length<<40 | index<<24 | number``."""

    if number >= 1 << 24 or index >= 1 << 16 or length >= 1 << 16:
        raise ValueError("epoch component out of range")
    return (length << 40) | (index << 24) | number


def epoch_decode(value: int) -> Tuple[int, int, int]:
    """Return ``(number, index, length)`` of a packed epoch."""

    return value & 0xFFFFFF, (value >> 24) & 0xFFFF, (value >> 40) & 0xFFFF


def absolute_epoch_since(number: int, index: int, length: int) -> int:
    return SINCE_ABSOLUTE_EPOCH_FLAG | epoch_encode(number, index, length)


def dao_encode(c: int, ar: int, s: int, u: int) -> bytes:
    return b"".join(value.to_bytes(8, "little") for value in (c, ar, s, u))


def dao_decode(dao: bytes) -> Tuple[int, int, int, int]:
    """Split the header DAO field into ``(c, ar, s, u)``."""

    if len(dao) != 32:
        raise ValueError("dao field must be 32 bytes")
    c = int.from_bytes(dao[0:8], "little")
    ar = int.from_bytes(dao[8:16], "little")
    s = int.from_bytes(dao[16:24], "little")
    u = int.from_bytes(dao[24:32], "little")
    return c, ar, s, u


def ckb_to_shannons(amount: float | int | str) -> int:
    return int(Decimal(str(amount)) * SHANNONS_PER_CKB)

"""Script references: concrete scripts or names of not-yet-added dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .address import decode_address, encode_address
from .config import Network
from .errors import ReferenceUnresolvedError
from .types import DEP_TYPE_DEP_GROUP, HASH_TYPE_DATA1, HASH_TYPE_TYPE, Script

if TYPE_CHECKING:
    from .skeleton import TransactionSkeleton


class ScriptRef:
    """A lock or type script that may still depend on the skeleton to resolve.

    ``ConcreteScript`` carries every field of the script. ``ReferenceScript``
    names a cell dependency instead; its code hash is computed from that
    dependency when the skeleton is converted to a transaction.
    """

    args: bytes

    @staticmethod
    def code(code_hash: bytes, args: bytes = b"") -> "ConcreteScript":
        return ConcreteScript(bytes(code_hash), HASH_TYPE_DATA1, bytes(args))

    @staticmethod
    def type(type_hash: bytes, args: bytes = b"") -> "ConcreteScript":
        return ConcreteScript(bytes(type_hash), HASH_TYPE_TYPE, bytes(args))

    @staticmethod
    def reference(dependency: str, args: bytes = b"") -> "ReferenceScript":
        return ReferenceScript(dependency, bytes(args))

    @staticmethod
    def from_script(script: Script) -> "ConcreteScript":
        return ConcreteScript(script.code_hash, script.hash_type, script.args)

    @staticmethod
    def from_address(address: str) -> "ConcreteScript":
        return ScriptRef.from_script(decode_address(address)[1])

    def with_args(self, args: bytes) -> "ScriptRef":
        raise NotImplementedError

    def to_script(self, skeleton: "TransactionSkeleton") -> Script:
        raise NotImplementedError

    def concrete(self) -> Script:
        raise ReferenceUnresolvedError(f"{self!r} needs a skeleton to resolve")

    def matches(self, script: Script | None) -> bool:
        return False

    def script_hash(self) -> bytes:
        return self.concrete().hash()

    def to_address(self, network: Network | str) -> str:
        return encode_address(self.concrete(), network)


@dataclass(frozen=True)
class ConcreteScript(ScriptRef):
    code_hash: bytes
    hash_type: int
    args: bytes = b""

    def with_args(self, args: bytes) -> "ConcreteScript":
        return ConcreteScript(self.code_hash, self.hash_type, bytes(args))

    def concrete(self) -> Script:
        return Script(self.code_hash, self.hash_type, self.args)

    def to_script(self, skeleton: "TransactionSkeleton") -> Script:
        return self.concrete()

    def matches(self, script: Script | None) -> bool:
        return script is not None and (
            script.code_hash == self.code_hash
            and script.hash_type == self.hash_type
            and script.args == self.args
        )


@dataclass(frozen=True)
class ReferenceScript(ScriptRef):
    dependency: str
    args: bytes = b""

    def with_args(self, args: bytes) -> "ReferenceScript":
        return ReferenceScript(self.dependency, bytes(args))

    def to_script(self, skeleton: "TransactionSkeleton") -> Script:
        dep = skeleton.find_dependency_by_script(self)
        if dep is None:
            raise ReferenceUnresolvedError(f"cell dep {self.dependency!r} not found")
        if dep.cell_dep.dep_type == DEP_TYPE_DEP_GROUP:
            raise ReferenceUnresolvedError(
                f"cell dep {self.dependency!r} is a dep group; its code hash is ambiguous"
            )
        type_hash = dep.output.type_hash()
        if type_hash is not None:
            return Script(type_hash, HASH_TYPE_TYPE, self.args)
        if not dep.with_data:
            raise ReferenceUnresolvedError(
                f"cell dep {self.dependency!r} has no data, cannot compute its data hash"
            )
        return Script(dep.output.data_hash(), HASH_TYPE_DATA1, self.args)

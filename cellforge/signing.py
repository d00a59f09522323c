"""secp256k1 sighash-all signing for the default lock script.

The default lock hashes the transaction hash together with every witness of
the lock group (first witness carrying a 65-byte zero placeholder in its
``lock`` field) and every witness beyond the input count, then verifies a
recoverable ECDSA signature ``r | s | recid`` over that digest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature

from .errors import NotFoundError
from .script_ref import ScriptRef
from .skeleton import TransactionSkeleton
from .types import HASH_TYPE_TYPE, Script, Transaction, blake2b_256, hex_encode, new_blake2b

logger = logging.getLogger(__name__)

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_FIELD_SIZE = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F

SECP256K1_BLAKE160_SIGHASH_ALL_CODE_HASH = bytes.fromhex(
    "9bd7e06f3ecf4be0f2fcd2188b23f1b9fcc88e5d4b65a8637b17723bbda3cce8"
)
SIGNATURE_SIZE = 65
SIGNATURE_PLACEHOLDER = bytes(SIGNATURE_SIZE)

_Point = ec.EllipticCurvePublicNumbers


def _point_add(p1: _Point | None, p2: _Point | None) -> _Point | None:
    """Add two affine points; ``None`` is the point at infinity."""

    if p1 is None:
        return p2
    if p2 is None:
        return p1
    p = SECP256K1_FIELD_SIZE
    x1, y1 = p1.x, p1.y
    x2, y2 = p2.x, p2.y
    if x1 == x2:
        if (y1 + y2) % p == 0:
            return None
        lam = (3 * x1 * x1 * pow(2 * y1, -1, p)) % p
    else:
        lam = ((y2 - y1) * pow(x2 - x1, -1, p)) % p
    x3 = (lam * lam - x1 - x2) % p
    y3 = (lam * (x1 - x3) - y1) % p
    return ec.EllipticCurvePublicNumbers(x3, y3, ec.SECP256K1())


def _point_mul(point: _Point, scalar: int) -> _Point | None:
    result: _Point | None = None
    addend: _Point | None = point
    scalar %= SECP256K1_ORDER
    while scalar:
        if scalar & 1:
            result = _point_add(result, addend)
        addend = _point_add(addend, addend)
        scalar >>= 1
    return result


def _generator_mul(scalar: int) -> _Point | None:
    scalar %= SECP256K1_ORDER
    if scalar == 0:
        return None
    key = ec.derive_private_key(scalar, ec.SECP256K1(), default_backend())
    return key.public_key().public_numbers()


@dataclass
class Secp256k1Key:
    """A secp256k1 private key able to unlock the default lock script."""

    secret: int = field(repr=False)

    def __post_init__(self) -> None:
        if not 0 < self.secret < SECP256K1_ORDER:
            raise ValueError("private key out of range")
        self._key = ec.derive_private_key(self.secret, ec.SECP256K1(), default_backend())

    @classmethod
    def from_hex(cls, value: str) -> "Secp256k1Key":
        if value.startswith("0x"):
            value = value[2:]
        return cls(int(value, 16))

    def public_key_bytes(self) -> bytes:
        """Compressed SEC1 public key."""

        return self._key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
        )

    def lock_args(self) -> bytes:
        return blake2b_256(self.public_key_bytes())[:20]

    def lock_script(self) -> Script:
        return Script(SECP256K1_BLAKE160_SIGHASH_ALL_CODE_HASH, HASH_TYPE_TYPE, self.lock_args())

    def lock_ref(self) -> ScriptRef:
        return ScriptRef.from_script(self.lock_script())

    def sign_recoverable(self, message: bytes) -> bytes:
        """Sign a 32-byte digest, returning ``r | s | recid`` with a low ``s``."""

        if len(message) != 32:
            raise ValueError("message must be a 32-byte digest")
        der = self._key.sign(message, ec.ECDSA(Prehashed(hashes.SHA256())))
        r, s = decode_dss_signature(der)
        if s > SECP256K1_ORDER // 2:
            s = SECP256K1_ORDER - s
        recid = self._recovery_id(message, r, s)
        return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([recid])

    def _recovery_id(self, message: bytes, r: int, s: int) -> int:
        # R = (e*G + r*Q) / s is the nonce point the verifier reconstructs.
        n = SECP256K1_ORDER
        e = int.from_bytes(message, "big") % n
        s_inv = pow(s, -1, n)
        public = self._key.public_key().public_numbers()
        point = _point_add(_generator_mul(e * s_inv), _point_mul(public, r * s_inv))
        if point is None:
            raise ValueError("signature nonce point is at infinity")
        recid = point.y & 1
        if point.x >= n:
            recid |= 2
        return recid


def sighash_all_message(tx: Transaction, group: Sequence[int]) -> bytes:
    """Digest signed by the lock group whose inputs are ``group``."""

    if not group:
        raise ValueError("signing group is empty")
    witnesses = tx.witnesses
    hasher = new_blake2b()
    hasher.update(tx.hash())
    for index in list(group) + list(range(len(tx.raw.inputs), len(witnesses))):
        witness = witnesses[index] if index < len(witnesses) else b""
        hasher.update(len(witness).to_bytes(8, "little"))
        hasher.update(witness)
    return hasher.digest()


def sign_sighash_groups(skeleton: TransactionSkeleton, keys: Iterable[Secp256k1Key]) -> List[int]:
    """Fill the lock field of every default-lock group owned by ``keys``.

    Returns the first input index of every signed group. Raises
    :class:`NotFoundError` when a key owns no input.
    """

    signed: List[int] = []
    skeleton.pad_witnesses()
    for key in keys:
        lock = key.lock_script()
        inputs, _ = skeleton.lock_script_groups(lock)
        if not inputs:
            raise NotFoundError(f"no input locked by {hex_encode(lock.args)}")
        first = inputs[0]
        if skeleton.witnesses[first].is_plain:
            raise ValueError(f"witness {first} is plain and cannot carry a signature")
        skeleton.witnesses[first].lock = SIGNATURE_PLACEHOLDER
        message = sighash_all_message(skeleton.to_transaction(), inputs)
        skeleton.witnesses[first].lock = key.sign_recoverable(message)
        logger.debug("Signed lock group %s at inputs %s", hex_encode(lock.args), inputs)
        signed.append(first)
    return signed

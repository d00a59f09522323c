"""Full-format (bech32m) address encoding for lock scripts.

A full address carries the whole lock script: ``0x00 | code_hash |
hash_type | args`` converted to 5-bit groups and checksummed with the
bech32m constant. Mainnet addresses use the ``ckb`` prefix, every other
network uses ``ckt``.
"""

from __future__ import annotations

from typing import List, Tuple

from .config import Network
from .types import HASH_TYPE_NAMES, Script

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32M_CONST = 0x2BC830A3
FULL_FORMAT = 0x00

MAINNET_HRP = "ckb"
TESTNET_HRP = "ckt"


class AddressError(ValueError):
    """Raised when an address cannot be encoded or decoded."""


def hrp_for_network(network: Network | str) -> str:
    return MAINNET_HRP if Network(network) is Network.MAINNET else TESTNET_HRP


def bech32_polymod(values: List[int]) -> int:
    generator = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= generator[i] if ((top >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32m_create_checksum(hrp: str, data: List[int]) -> List[int]:
    polymod = bech32_polymod(bech32_hrp_expand(hrp) + data + [0] * 6) ^ BECH32M_CONST
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32m_verify_checksum(hrp: str, data: List[int]) -> bool:
    return bech32_polymod(bech32_hrp_expand(hrp) + data) == BECH32M_CONST


def _convertbits(data: bytes | List[int], frombits: int, tobits: int, pad: bool = True) -> List[int] | None:
    acc = 0
    bits = 0
    ret: List[int] = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or value >> frombits:
            return None
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None

    return ret


def encode_address(script: Script, network: Network | str) -> str:
    """Encode ``script`` as a full-format address for ``network``."""

    if script.hash_type not in HASH_TYPE_NAMES:
        raise AddressError(f"unsupported hash type {script.hash_type}")
    payload = bytes([FULL_FORMAT]) + script.code_hash + bytes([script.hash_type]) + script.args
    data = _convertbits(payload, 8, 5)
    if data is None:
        raise AddressError("failed to convert address payload to 5-bit groups")
    hrp = hrp_for_network(network)
    checksum = bech32m_create_checksum(hrp, data)
    return hrp + "1" + "".join(CHARSET[d] for d in data + checksum)


def decode_address(address: str) -> Tuple[Network, Script]:
    """Decode a full-format address into its network and lock script.

    Testnet-prefixed addresses decode to :attr:`Network.TESTNET`.
    """

    if address.lower() != address and address.upper() != address:
        raise AddressError("mixed-case address")
    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address):
        raise AddressError("missing separator or checksum")
    hrp = address[:pos]
    if hrp == MAINNET_HRP:
        network = Network.MAINNET
    elif hrp == TESTNET_HRP:
        network = Network.TESTNET
    else:
        raise AddressError(f"unknown address prefix {hrp!r}")
    try:
        data = [CHARSET.index(char) for char in address[pos + 1 :]]
    except ValueError as exc:
        raise AddressError("invalid bech32 character") from exc
    if not bech32m_verify_checksum(hrp, data):
        raise AddressError("invalid bech32m checksum")
    decoded = _convertbits(data[:-6], 5, 8, pad=False)
    if decoded is None:
        raise AddressError("invalid address padding")
    payload = bytes(decoded)
    if len(payload) < 34 or payload[0] != FULL_FORMAT:
        raise AddressError("only full-format addresses are supported")
    hash_type = payload[33]
    if hash_type not in HASH_TYPE_NAMES:
        raise AddressError(f"unsupported hash type {hash_type}")
    return network, Script(payload[1:33], hash_type, payload[34:])


def script_from_address(address: str) -> Script:
    return decode_address(address)[1]

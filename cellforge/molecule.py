"""Molecule binary serialization used by the chain's wire format.

Molecule has two kinds of layouts. Fixed-size layouts (bytes, integers,
structs, fixed vectors of fixed items) are plain concatenations. Dynamic
layouts (tables, dynamic vectors) start with a little-endian ``u32`` total
size followed by one ``u32`` offset per item. The codecs below mirror those
two shapes and are composed by :mod:`cellforge.types` to describe scripts,
cells and transactions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

NUMBER_SIZE = 4


class MoleculeError(ValueError):
    """Raised when molecule bytes cannot be decoded."""


def _pack_u32(value: int) -> bytes:
    return value.to_bytes(NUMBER_SIZE, "little")


def _unpack_u32(data: bytes, offset: int = 0) -> int:
    if len(data) < offset + NUMBER_SIZE:
        raise MoleculeError("buffer too short for a u32 header")
    return int.from_bytes(data[offset : offset + NUMBER_SIZE], "little")


class Codec:
    """Base codec; ``size`` is ``None`` for dynamically sized layouts."""

    size: int | None = None

    def encode(self, value: Any) -> bytes:
        raise NotImplementedError

    def decode(self, data: bytes) -> Any:
        raise NotImplementedError


class Fixed(Codec):
    """An array of exactly ``size`` bytes (``Byte32`` and friends)."""

    def __init__(self, size: int) -> None:
        self.size = size

    def encode(self, value: bytes) -> bytes:
        value = bytes(value)
        if len(value) != self.size:
            raise MoleculeError(f"expected {self.size} bytes, got {len(value)}")
        return value

    def decode(self, data: bytes) -> bytes:
        if len(data) != self.size:
            raise MoleculeError(f"expected {self.size} bytes, got {len(data)}")
        return bytes(data)


class Uint(Codec):
    """Little-endian unsigned integer."""

    def __init__(self, size: int) -> None:
        self.size = size

    def encode(self, value: int) -> bytes:
        try:
            return int(value).to_bytes(self.size, "little")
        except OverflowError as exc:
            raise MoleculeError(f"{value} does not fit in {self.size} bytes") from exc

    def decode(self, data: bytes) -> int:
        if len(data) != self.size:
            raise MoleculeError(f"expected {self.size} bytes, got {len(data)}")
        return int.from_bytes(data, "little")


class Struct(Codec):
    """Concatenation of fixed-size fields."""

    def __init__(self, fields: Sequence[Codec]) -> None:
        for field in fields:
            if field.size is None:
                raise TypeError("struct fields must have a fixed size")
        self.fields = list(fields)
        self.size = sum(field.size for field in self.fields)  # type: ignore[misc]

    def encode(self, values: Sequence[Any]) -> bytes:
        if len(values) != len(self.fields):
            raise MoleculeError("struct field count mismatch")
        return b"".join(field.encode(value) for field, value in zip(self.fields, values))

    def decode(self, data: bytes) -> List[Any]:
        if len(data) != self.size:
            raise MoleculeError(f"struct expects {self.size} bytes, got {len(data)}")
        values: List[Any] = []
        offset = 0
        for field in self.fields:
            values.append(field.decode(data[offset : offset + field.size]))
            offset += field.size  # type: ignore[operator]
        return values


class FixVec(Codec):
    """Vector of fixed-size items prefixed by a ``u32`` item count."""

    def __init__(self, item: Codec) -> None:
        if item.size is None:
            raise TypeError("fixvec items must have a fixed size")
        self.item = item

    def encode(self, values: Sequence[Any]) -> bytes:
        return _pack_u32(len(values)) + b"".join(self.item.encode(v) for v in values)

    def decode(self, data: bytes) -> List[Any]:
        count = _unpack_u32(data)
        item_size: int = self.item.size  # type: ignore[assignment]
        if len(data) != NUMBER_SIZE + count * item_size:
            raise MoleculeError("fixvec length does not match item count")
        return [
            self.item.decode(data[NUMBER_SIZE + i * item_size : NUMBER_SIZE + (i + 1) * item_size])
            for i in range(count)
        ]


class _BytesCodec(Codec):
    """``vector Bytes <byte>``; values are plain ``bytes``."""

    def encode(self, value: bytes) -> bytes:
        value = bytes(value)
        return _pack_u32(len(value)) + value

    def decode(self, data: bytes) -> bytes:
        count = _unpack_u32(data)
        if len(data) != NUMBER_SIZE + count:
            raise MoleculeError("bytes length does not match header")
        return bytes(data[NUMBER_SIZE:])


def _encode_dynamic(parts: Sequence[bytes]) -> bytes:
    header_size = NUMBER_SIZE * (1 + len(parts))
    offsets: List[int] = []
    cursor = header_size
    for part in parts:
        offsets.append(cursor)
        cursor += len(part)
    header = _pack_u32(cursor) + b"".join(_pack_u32(offset) for offset in offsets)
    return header + b"".join(parts)


def _decode_dynamic(data: bytes) -> List[bytes]:
    total = _unpack_u32(data)
    if total != len(data):
        raise MoleculeError(f"declared size {total} does not match buffer size {len(data)}")
    if total == NUMBER_SIZE:
        return []
    first = _unpack_u32(data, NUMBER_SIZE)
    if first % NUMBER_SIZE != 0 or first < NUMBER_SIZE * 2 or first > total:
        raise MoleculeError("invalid first offset in dynamic header")
    count = first // NUMBER_SIZE - 1
    offsets = [_unpack_u32(data, NUMBER_SIZE * (i + 1)) for i in range(count)] + [total]
    parts: List[bytes] = []
    for start, end in zip(offsets, offsets[1:]):
        if start > end:
            raise MoleculeError("offsets are not ascending")
        parts.append(bytes(data[start:end]))
    return parts


class DynVec(Codec):
    """Vector of dynamically sized items."""

    def __init__(self, item: Codec) -> None:
        self.item = item

    def encode(self, values: Sequence[Any]) -> bytes:
        return _encode_dynamic([self.item.encode(v) for v in values])

    def decode(self, data: bytes) -> List[Any]:
        return [self.item.decode(part) for part in _decode_dynamic(data)]


class Table(Codec):
    """Table of heterogeneous fields addressed through an offset header."""

    def __init__(self, fields: Sequence[Codec]) -> None:
        self.fields = list(fields)

    def encode(self, values: Sequence[Any]) -> bytes:
        if len(values) != len(self.fields):
            raise MoleculeError("table field count mismatch")
        return _encode_dynamic(
            [field.encode(value) for field, value in zip(self.fields, values)]
        )

    def decode(self, data: bytes) -> List[Any]:
        parts = _decode_dynamic(data)
        if len(parts) != len(self.fields):
            raise MoleculeError(
                f"table expects {len(self.fields)} fields, found {len(parts)}"
            )
        return [field.decode(part) for field, part in zip(self.fields, parts)]


class Option(Codec):
    """Optional value: zero bytes means ``None``."""

    def __init__(self, inner: Codec) -> None:
        self.inner = inner

    def encode(self, value: Any) -> bytes:
        if value is None:
            return b""
        return self.inner.encode(value)

    def decode(self, data: bytes) -> Any:
        if not data:
            return None
        return self.inner.decode(data)


class Union(Codec):
    """Tagged union: ``u32`` item id followed by the item payload."""

    def __init__(self, items: Dict[int, Codec]) -> None:
        self.items = dict(items)

    def encode(self, value: Tuple[int, Any]) -> bytes:
        item_id, payload = value
        if item_id not in self.items:
            raise MoleculeError(f"unknown union item id {item_id}")
        return _pack_u32(item_id) + self.items[item_id].encode(payload)

    def decode(self, data: bytes) -> Tuple[int, Any]:
        item_id = _unpack_u32(data)
        if item_id not in self.items:
            raise MoleculeError(f"unknown union item id {item_id}")
        return item_id, self.items[item_id].decode(data[NUMBER_SIZE:])


class Raw(Codec):
    """Pre-serialized bytes embedded as-is (nested tables, opaque fields)."""

    def __init__(self, size: int | None = None) -> None:
        self.size = size

    def encode(self, value: bytes) -> bytes:
        value = bytes(value)
        if self.size is not None and len(value) != self.size:
            raise MoleculeError(f"expected {self.size} bytes, got {len(value)}")
        return value

    def decode(self, data: bytes) -> bytes:
        if self.size is not None and len(data) != self.size:
            raise MoleculeError(f"expected {self.size} bytes, got {len(data)}")
        return bytes(data)


Byte = Uint(1)
U32 = Uint(4)
U64 = Uint(8)
U128 = Uint(16)
Byte32 = Fixed(32)
Bytes = _BytesCodec()
BytesOpt = Option(Bytes)
BytesVec = DynVec(Bytes)
Byte32Vec = FixVec(Byte32)

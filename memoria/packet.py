"""Packages: an operation code plus a payload of length-prefixed items."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

__all__ = ["Package", "decode_int", "decode_uint32", "decode_string"]

_HEADER = struct.Struct("<BI")
_LENGTH = struct.Struct("<I")
_INT = struct.Struct("<i")
_UINT32 = struct.Struct("<I")


@dataclass
class Package:
    """A message: one-byte operation code and a payload of items.

    On the wire a package is the code (uint8), the payload size (uint32)
    and the payload; each payload item is its length (uint32) followed by
    its bytes.
    """

    op_code: int
    payload: bytearray = field(default_factory=bytearray)

    def __post_init__(self) -> None:
        code = int(self.op_code)
        if not 0 <= code <= 0xFF:
            raise ValueError(f"operation code out of range: {code}")
        self.op_code = code
        self.payload = bytearray(self.payload)

    def add(self, data: bytes) -> "Package":
        """Append one item of raw bytes."""
        data = bytes(data)
        if len(data) > 0xFFFFFFFF:
            raise ValueError("item too large")
        self.payload += _LENGTH.pack(len(data))
        self.payload += data
        return self

    def add_int(self, value: int) -> "Package":
        """Append a signed 32-bit integer item."""
        try:
            return self.add(_INT.pack(value))
        except struct.error as exc:
            raise ValueError(f"not a 32-bit signed integer: {value}") from exc

    def add_uint32(self, value: int) -> "Package":
        """Append an unsigned 32-bit integer item."""
        try:
            return self.add(_UINT32.pack(value))
        except struct.error as exc:
            raise ValueError(f"not a 32-bit unsigned integer: {value}") from exc

    def add_string(self, text: str) -> "Package":
        """Append a NUL-terminated text item."""
        return self.add(text.encode("utf-8") + b"\0")

    def items(self) -> list[bytes]:
        """Split the payload into its items."""
        result: list[bytes] = []
        view = memoryview(self.payload)
        offset = 0
        while offset < len(view):
            if len(view) - offset < _LENGTH.size:
                raise ValueError("truncated item length")
            (length,) = _LENGTH.unpack_from(view, offset)
            offset += _LENGTH.size
            if len(view) - offset < length:
                raise ValueError("truncated item data")
            result.append(bytes(view[offset:offset + length]))
            offset += length
        return result

    def message(self) -> str:
        """Return the first item read as text."""
        items = self.items()
        if not items:
            raise ValueError("package holds no items")
        return decode_string(items[0])

    def encode(self) -> bytes:
        """Return the package as it travels on the wire."""
        return _HEADER.pack(self.op_code, len(self.payload)) + bytes(self.payload)

    @classmethod
    def decode(cls, data: bytes) -> "Package":
        """Build a package from its exact wire form."""
        if len(data) < _HEADER.size:
            raise ValueError("truncated package header")
        code, size = _HEADER.unpack_from(data, 0)
        payload = data[_HEADER.size:]
        if len(payload) != size:
            raise ValueError(
                f"payload size mismatch: header says {size}, got {len(payload)}"
            )
        return cls(code, bytearray(payload))


def decode_int(item: bytes) -> int:
    """Read a signed 32-bit integer item."""
    if len(item) != _INT.size:
        raise ValueError(f"integer item must be 4 bytes, got {len(item)}")
    return _INT.unpack(item)[0]


def decode_uint32(item: bytes) -> int:
    """Read an unsigned 32-bit integer item."""
    if len(item) != _UINT32.size:
        raise ValueError(f"integer item must be 4 bytes, got {len(item)}")
    return _UINT32.unpack(item)[0]


def decode_string(item: bytes) -> str:
    """Read a text item, stopping at the first NUL byte."""
    text, _, _ = bytes(item).partition(b"\0")
    return text.decode("utf-8")
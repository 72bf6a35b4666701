"""
txcompose.wire
==============

Low-level codec primitives for the compact message wire format:

- shortvec lengths: little-endian base-128 varint, 1..3 bytes, range 0..=0xFFFF
- a bounds-checked `Reader` cursor that raises `MalformedEnvelope`
- transaction framing: shortvec(n) + n * 64-byte signatures + message
- input coercion for bytes / base64 / hex text

Everything here is pure and allocation-light; higher layers
(`decompiler`, `compiler`) own the message grammar.
"""

from __future__ import annotations

import base64
import binascii
from typing import List, Sequence, Tuple, Union

from .errors import MalformedEnvelope

ADDRESS_LEN = 32
SIGNATURE_LEN = 64
MAX_SHORTVEC = 0xFFFF
VERSION_PREFIX_MASK = 0x80

BytesLike = Union[bytes, bytearray, memoryview]


# -----------------------
# shortvec
# -----------------------

def encode_length(n: int) -> bytes:
    """Encode `n` as a shortvec compact length."""
    if n < 0 or n > MAX_SHORTVEC:
        raise ValueError(f"shortvec length out of range: {n}")
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_length(data: BytesLike, offset: int = 0) -> Tuple[int, int]:
    """
    Decode a shortvec at `offset`. Returns (value, next_offset).

    Rejects truncated input, encodings longer than 3 bytes, non-minimal
    encodings (a final zero byte after a continuation) and values above 0xFFFF.
    """
    value = 0
    for i in range(3):
        pos = offset + i
        if pos >= len(data):
            raise MalformedEnvelope("truncated compact length", offset=offset)
        byte = data[pos]
        value |= (byte & 0x7F) << (7 * i)
        if byte & 0x80 == 0:
            if byte == 0 and i > 0:
                raise MalformedEnvelope("non-minimal compact length", offset=offset)
            if value > MAX_SHORTVEC:
                raise MalformedEnvelope("compact length overflow", offset=offset)
            return value, pos + 1
    raise MalformedEnvelope("compact length longer than 3 bytes", offset=offset)


def length_size(n: int) -> int:
    """Number of bytes `encode_length(n)` produces."""
    return len(encode_length(n))


# -----------------------
# Reader
# -----------------------

class Reader:
    """Bounds-checked forward cursor over a byte buffer."""

    __slots__ = ("data", "offset")

    def __init__(self, data: BytesLike, offset: int = 0) -> None:
        self.data = bytes(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def peek_u8(self) -> int:
        if self.offset >= len(self.data):
            raise MalformedEnvelope("unexpected end of input", offset=self.offset)
        return self.data[self.offset]

    def read_u8(self) -> int:
        value = self.peek_u8()
        self.offset += 1
        return value

    def read_bytes(self, n: int, *, what: str = "bytes") -> bytes:
        end = self.offset + n
        if n < 0 or end > len(self.data):
            raise MalformedEnvelope(
                f"truncated {what}: need {n} bytes, have {self.remaining}",
                offset=self.offset,
            )
        out = self.data[self.offset:end]
        self.offset = end
        return out

    def read_length(self) -> int:
        value, self.offset = decode_length(self.data, self.offset)
        return value

    def read_vec_u8(self, *, what: str = "index list") -> List[int]:
        n = self.read_length()
        return list(self.read_bytes(n, what=what))

    def expect_end(self) -> None:
        if self.remaining:
            raise MalformedEnvelope(
                f"{self.remaining} trailing bytes after message", offset=self.offset
            )


# -----------------------
# Transaction framing
# -----------------------

def unwrap_transaction(raw: BytesLike) -> Tuple[Tuple[bytes, ...], bytes]:
    """
    Split a serialized transaction into (signatures, message_bytes).
    """
    r = Reader(raw)
    count = r.read_length()
    sigs = tuple(r.read_bytes(SIGNATURE_LEN, what="signature") for _ in range(count))
    message = r.data[r.offset:]
    if not message:
        raise MalformedEnvelope("transaction has no message", offset=r.offset)
    return sigs, message


def frame_transaction(signatures: Sequence[bytes], message: bytes) -> bytes:
    """Inverse of `unwrap_transaction`."""
    out = bytearray(encode_length(len(signatures)))
    for sig in signatures:
        if len(sig) != SIGNATURE_LEN:
            raise ValueError(f"signature must be {SIGNATURE_LEN} bytes, got {len(sig)}")
        out += sig
    out += message
    return bytes(out)


def framed_size(message_len: int, num_signatures: int) -> int:
    """Serialized transaction size for a message and its signature slots."""
    return length_size(num_signatures) + SIGNATURE_LEN * num_signatures + message_len


# -----------------------
# Input coercion
# -----------------------

def coerce_bytes(value: Union[BytesLike, str]) -> bytes:
    """
    Normalize envelope input:
    - bytes/bytearray/memoryview → bytes
    - str → base64 (what routing services return), or hex with a 0x prefix
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("0x", "0X")):
            try:
                return bytes.fromhex(text[2:])
            except ValueError as e:
                raise MalformedEnvelope(f"invalid hex envelope: {e}") from e
        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedEnvelope(f"invalid base64 envelope: {e}") from e
    raise TypeError(f"unsupported envelope type: {type(value)!r}")


__all__ = [
    "ADDRESS_LEN",
    "SIGNATURE_LEN",
    "VERSION_PREFIX_MASK",
    "Reader",
    "encode_length",
    "decode_length",
    "length_size",
    "unwrap_transaction",
    "frame_transaction",
    "framed_size",
    "coerce_bytes",
]

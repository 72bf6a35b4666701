from __future__ import annotations

"""
txcompose.tests
---------------
Package marker for the txcompose test suite, plus the small builders the
test modules share:

- key(n): deterministic distinct addresses
- transfer(src, dst, lamports): a System Program transfer instruction
- encode_message(...): hand-assembled v0 / legacy wire bytes, written
  independently of the compiler so decompiler tests do not depend on it
"""

import hashlib
import struct
from typing import Iterable, Optional, Sequence, Tuple

from txcompose.types import Address, Direct, Instruction
from txcompose.wire import encode_length

SYSTEM_PROGRAM = Address("11111111111111111111111111111111")
BLOCKHASH = bytes(range(32))


def key(n: int) -> Address:
    return Address(hashlib.sha256(f"txcompose-test-key-{n}".encode()).digest())


# Fixed cast for the routing-style envelope used across modules.
PROGRAM_A = key(900)
TABLE_A = key(800)
ACC_X = key(1)
ACC_Y = key(2)
PAYER = key(10)
RECIPIENT = key(11)


def transfer(src: bytes, dst: bytes, lamports: int) -> Instruction:
    return Instruction(
        SYSTEM_PROGRAM,
        (Direct(src, writable=True, signer=True), Direct(dst, writable=True)),
        struct.pack("<IQ", 2, lamports),
    )


def encode_message(
    header: Tuple[int, int, int],
    static_keys: Sequence[bytes],
    instructions: Iterable[Tuple[int, Sequence[int], bytes]],
    lookups: Iterable[Tuple[bytes, Sequence[int], Sequence[int]]] = (),
    *,
    blockhash: bytes = BLOCKHASH,
    version: Optional[int] = 0,
) -> bytes:
    out = bytearray()
    if version is not None:
        out.append(0x80 | version)
    out += bytes(header)
    out += encode_length(len(static_keys))
    for k in static_keys:
        out += k
    out += blockhash
    ixs = list(instructions)
    out += encode_length(len(ixs))
    for program, accounts, data in ixs:
        out.append(program)
        out += encode_length(len(accounts)) + bytes(accounts)
        out += encode_length(len(data)) + data
    if version is not None:
        lks = list(lookups)
        out += encode_length(len(lks))
        for table, writable, readonly in lks:
            out += table
            out += encode_length(len(writable)) + bytes(writable)
            out += encode_length(len(readonly)) + bytes(readonly)
    return bytes(out)


__all__: list[str] = [
    "SYSTEM_PROGRAM",
    "BLOCKHASH",
    "PROGRAM_A",
    "TABLE_A",
    "ACC_X",
    "ACC_Y",
    "PAYER",
    "RECIPIENT",
    "key",
    "transfer",
    "encode_message",
]

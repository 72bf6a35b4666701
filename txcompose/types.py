from __future__ import annotations

"""
txcompose/types.py
==================

Value types shared by every stage of a composition:

- **Address**: 32-byte opaque identifier (a `bytes` subclass; equality is
  byte-exact). Text form is base58, as wallets and RPC nodes print it.
- **AccountRef**: `Direct(address, writable, signer)` or
  `Indirect(table, index, writable)`.
- **LookupTable**: read-only snapshot of an on-chain address table.
- **Instruction**: caller-facing instruction (program id + positional account
  refs + opaque data).
- **Message**: the editable intermediate form produced by the decompiler,
  extended by the splicer and consumed once by the compiler.
- **ComposedEnvelope**: compiled, still-unsigned output handed to a signer.

All types are frozen; stages return new values instead of mutating.
"""

from dataclasses import dataclass, field, replace
from typing import (Any, Dict, List, Mapping, Optional, Protocol, Sequence,
                    Tuple, Union)

import base58

from .errors import DuplicateAddressConflict, MalformedEnvelope
from .wire import (ADDRESS_LEN, SIGNATURE_LEN, frame_transaction,
                   framed_size)

# Highest table position a u8 lookup index can address.
MAX_TABLE_INDEX = 255

# On-chain lookup table account layout.
LOOKUP_TABLE_META_SIZE = 56
LOOKUP_TABLE_DISCRIMINATOR = 1
_U64_MAX = (1 << 64) - 1


class Address(bytes):
    """
    32-byte address. Accepts raw bytes or a base58 string.

    >>> a = Address(b"\\x00" * 32)
    >>> str(a)
    '11111111111111111111111111111111'
    """

    def __new__(cls, value: Union[bytes, bytearray, memoryview, str]) -> "Address":
        if isinstance(value, Address):
            return value
        if isinstance(value, str):
            try:
                raw = base58.b58decode(value)
            except ValueError as e:
                raise ValueError(f"invalid base58 address {value!r}: {e}") from e
        elif isinstance(value, (bytes, bytearray, memoryview)):
            raw = bytes(value)
        else:
            raise TypeError(f"Address expects bytes or base58 str, got {type(value)!r}")
        if len(raw) != ADDRESS_LEN:
            raise ValueError(f"Address must be {ADDRESS_LEN} bytes, got {len(raw)}")
        return super().__new__(cls, raw)

    @classmethod
    def from_string(cls, text: str) -> "Address":
        return cls(text)

    def __str__(self) -> str:
        return base58.b58encode(bytes(self)).decode("ascii")

    def __repr__(self) -> str:
        return f"Address({str(self)!r})"


# ---- account references ----

@dataclass(frozen=True)
class Direct:
    address: Address
    writable: bool = False
    signer: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", Address(self.address))


@dataclass(frozen=True)
class Indirect:
    table: Address
    index: int
    writable: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "table", Address(self.table))
        if not 0 <= int(self.index) <= MAX_TABLE_INDEX:
            raise ValueError(f"Indirect.index must be in 0..{MAX_TABLE_INDEX}, got {self.index}")

    @property
    def signer(self) -> bool:
        return False


AccountRef = Union[Direct, Indirect]


# ---- lookup tables ----

@dataclass(frozen=True)
class LookupTable:
    """
    Snapshot of one address lookup table. Entries are immutable for the
    duration of a composition; index stability across snapshots is not assumed.
    """

    address: Address
    entries: Tuple[Address, ...] = ()
    deactivation_slot: Optional[int] = None
    last_extended_slot: int = 0
    authority: Optional[Address] = None
    _positions: Dict[bytes, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", Address(self.address))
        entries = tuple(Address(e) for e in self.entries)
        object.__setattr__(self, "entries", entries)
        positions: Dict[bytes, int] = {}
        for i, e in enumerate(entries[: MAX_TABLE_INDEX + 1]):
            positions.setdefault(e, i)
        object.__setattr__(self, "_positions", positions)

    def __len__(self) -> int:
        return len(self.entries)

    def index_of(self, address: bytes) -> Optional[int]:
        """First u8-addressable position holding `address`, or None."""
        return self._positions.get(bytes(address))

    @property
    def is_active(self) -> bool:
        return self.deactivation_slot is None

    @classmethod
    def from_account_data(cls, address: Union[bytes, str], data: bytes) -> "LookupTable":
        """
        Parse raw table account data as stored on chain:

            u32 discriminator (1 = lookup table)
            u64 deactivation slot (u64::MAX while active)
            u64 last extended slot
            u8  last extended start index
            u8  authority option tag, 32-byte authority
            u16 padding
            32-byte entries...
        """
        data = bytes(data)
        if len(data) < LOOKUP_TABLE_META_SIZE:
            raise MalformedEnvelope(
                "lookup table account data shorter than metadata", size=len(data)
            )
        disc = int.from_bytes(data[0:4], "little")
        if disc != LOOKUP_TABLE_DISCRIMINATOR:
            raise MalformedEnvelope("not a lookup table account", discriminator=disc)
        body = data[LOOKUP_TABLE_META_SIZE:]
        if len(body) % ADDRESS_LEN:
            raise MalformedEnvelope("lookup table entries are misaligned", size=len(body))
        deactivation = int.from_bytes(data[4:12], "little")
        last_extended = int.from_bytes(data[12:20], "little")
        authority = Address(data[22:54]) if data[21] == 1 else None
        entries = tuple(
            Address(body[i : i + ADDRESS_LEN]) for i in range(0, len(body), ADDRESS_LEN)
        )
        return cls(
            address=Address(address),
            entries=entries,
            deactivation_slot=None if deactivation == _U64_MAX else deactivation,
            last_extended_slot=last_extended,
            authority=authority,
        )


TablesArg = Union[Mapping[bytes, LookupTable], Sequence[LookupTable]]


def table_map(tables: Optional[TablesArg]) -> Dict[Address, LookupTable]:
    """Normalize a mapping or sequence of tables into an ordered dict."""
    if tables is None:
        return {}
    if isinstance(tables, Mapping):
        return {Address(k): v for k, v in tables.items()}
    return {t.address: t for t in tables}


# ---- instructions ----

@dataclass(frozen=True)
class Instruction:
    program_id: Address
    accounts: Tuple[AccountRef, ...] = ()
    data: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "program_id", Address(self.program_id))
        accounts = tuple(self.accounts)
        for ref in accounts:
            if not isinstance(ref, (Direct, Indirect)):
                raise TypeError("Instruction.accounts elements must be Direct or Indirect")
        object.__setattr__(self, "accounts", accounts)
        if not isinstance(self.data, (bytes, bytearray)):
            raise TypeError("Instruction.data must be bytes")
        object.__setattr__(self, "data", bytes(self.data))


@dataclass(frozen=True)
class CompiledInstruction:
    """Instruction whose program and accounts are positions in an account list."""

    program_index: int
    account_indexes: Tuple[int, ...]
    data: bytes


# ---- message ----

@dataclass(frozen=True)
class MessageHeader:
    num_required_signatures: int
    num_readonly_signed_accounts: int
    num_readonly_unsigned_accounts: int

    def to_bytes(self) -> bytes:
        return bytes(
            (
                self.num_required_signatures,
                self.num_readonly_signed_accounts,
                self.num_readonly_unsigned_accounts,
            )
        )


@dataclass(frozen=True)
class AccountEntry:
    address: Address
    writable: bool
    signer: bool

    def widened(self, writable: bool, signer: bool) -> "AccountEntry":
        return AccountEntry(self.address, self.writable or writable, self.signer or signer)


@dataclass(frozen=True)
class AddressTableLookup:
    table: Address
    writable_indexes: Tuple[int, ...]
    readonly_indexes: Tuple[int, ...]

    @property
    def count(self) -> int:
        return len(self.writable_indexes) + len(self.readonly_indexes)


@dataclass(frozen=True)
class Message:
    """
    Intermediate form. `accounts` is deduplicated by address and append-only
    within a composition; instructions reference positions in it.
    `address_table_lookups` records what the source envelope used and is
    informational: the compiler re-derives lookups from its candidate tables.
    """

    accounts: Tuple[AccountEntry, ...]
    instructions: Tuple[CompiledInstruction, ...]
    recent_blockhash: bytes = bytes(32)
    payer: Optional[Address] = None
    address_table_lookups: Tuple[AddressTableLookup, ...] = ()
    version: Optional[int] = 0
    _index: Dict[bytes, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if len(self.recent_blockhash) != 32:
            raise ValueError("Message.recent_blockhash must be 32 bytes")
        index: Dict[bytes, int] = {}
        for i, entry in enumerate(self.accounts):
            if entry.address in index:
                raise DuplicateAddressConflict(address=str(entry.address), where="account list")
            index[entry.address] = i
        object.__setattr__(self, "_index", index)

    @property
    def header(self) -> MessageHeader:
        """Signer/readonly partition counts over the whole account list."""
        signers = [a for a in self.accounts if a.signer]
        return MessageHeader(
            num_required_signatures=len(signers),
            num_readonly_signed_accounts=sum(1 for a in signers if not a.writable),
            num_readonly_unsigned_accounts=sum(
                1 for a in self.accounts if not a.signer and not a.writable
            ),
        )

    def index_of(self, address: bytes) -> Optional[int]:
        return self._index.get(bytes(address))

    def entry(self, address: bytes) -> Optional[AccountEntry]:
        i = self.index_of(address)
        return None if i is None else self.accounts[i]

    def program_ids(self) -> Tuple[Address, ...]:
        seen: Dict[bytes, None] = {}
        for ix in self.instructions:
            seen.setdefault(self.accounts[ix.program_index].address, None)
        return tuple(Address(a) for a in seen)

    def signers(self) -> Tuple[Address, ...]:
        return tuple(a.address for a in self.accounts if a.signer)

    def semantics(self) -> Tuple[Any, ...]:
        """
        Order-insensitive account flags plus per-instruction (program, accounts,
        data). Two messages with equal semantics compile to equivalent envelopes.
        """
        flags = frozenset((bytes(a.address), a.writable, a.signer) for a in self.accounts)
        ixs = tuple(
            (
                bytes(self.accounts[ix.program_index].address),
                tuple(bytes(self.accounts[i].address) for i in ix.account_indexes),
                ix.data,
            )
            for ix in self.instructions
        )
        payer = bytes(self.payer) if self.payer is not None else None
        return (payer, bytes(self.recent_blockhash), flags, ixs)

    def equivalent(self, other: "Message") -> bool:
        return self.semantics() == other.semantics()

    def with_blockhash(self, blockhash: bytes) -> "Message":
        return replace(self, recent_blockhash=bytes(blockhash))


# ---- output ----

class Signer(Protocol):
    """Signing collaborator. Holds key material; the engine never does."""

    def sign(self, message: bytes, address: Address) -> bytes:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True)
class ComposedEnvelope:
    """Compiled message plus the addresses that must sign it, in signature order."""

    message: bytes
    required_signers: Tuple[Address, ...]

    @property
    def required_signer_addresses(self) -> frozenset:
        return frozenset(self.required_signers)

    @property
    def size(self) -> int:
        """Serialized transaction size including signature slots."""
        return framed_size(len(self.message), len(self.required_signers))

    def to_unsigned_transaction(self) -> bytes:
        """Transaction framing with zeroed signature placeholders."""
        return frame_transaction([bytes(SIGNATURE_LEN)] * len(self.required_signers), self.message)

    def attach_signatures(self, signatures: Mapping[bytes, bytes]) -> bytes:
        """
        Place externally produced signatures (keyed by signer address) in
        signature order and return the submittable transaction bytes.
        """
        keyed = {bytes(k): bytes(v) for k, v in signatures.items()}
        ordered: List[bytes] = []
        for signer in self.required_signers:
            sig = keyed.get(bytes(signer))
            if sig is None:
                raise KeyError(f"missing signature for {signer}")
            ordered.append(sig)
        return frame_transaction(ordered, self.message)

    def sign_with(self, signer: Signer) -> bytes:
        return self.attach_signatures(
            {addr: signer.sign(self.message, addr) for addr in self.required_signers}
        )


__all__ = [
    "Address",
    "Direct",
    "Indirect",
    "AccountRef",
    "LookupTable",
    "TablesArg",
    "table_map",
    "Instruction",
    "CompiledInstruction",
    "MessageHeader",
    "AccountEntry",
    "AddressTableLookup",
    "Message",
    "Signer",
    "ComposedEnvelope",
    "MAX_TABLE_INDEX",
    "LOOKUP_TABLE_META_SIZE",
]

"""
txcompose.decompiler
====================

Compiled wire message → intermediate `Message`.

Two layers:

  • parse_message(data)         structural parse only, no table access
  • decompile(data, tables)     parse + resolve lookups + recover flags

Wire layout (v0)
----------------
    u8       0x80 | version            (absent for legacy messages)
    u8[3]    header: required signatures, readonly signed, readonly unsigned
    shortvec static key count, then 32-byte keys
    u8[32]   recent blockhash
    shortvec instruction count, each:
               u8 program index, shortvec + u8 account indexes, shortvec + data
    shortvec lookup count, each:                       (v0 only)
               32-byte table, shortvec + u8 writable idx, shortvec + u8 readonly idx

Instruction indexes address the combined list

    static keys ++ writable lookups (table order) ++ readonly lookups (table order)

which is also the order of `Message.accounts` after decompiling, so compiled
instruction indexes carry over unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple, Union

from .errors import MalformedEnvelope
from .resolver import resolve_lookup
from .types import (AccountEntry, Address, AddressTableLookup,
                    CompiledInstruction, LookupTable, Message, MessageHeader)
from .wire import ADDRESS_LEN, VERSION_PREFIX_MASK, Reader, coerce_bytes, unwrap_transaction

SUPPORTED_VERSIONS = (0,)


@dataclass(frozen=True)
class RawMessage:
    """Structural view of a wire message before any table is consulted."""

    version: Optional[int]
    header: MessageHeader
    static_keys: Tuple[Address, ...]
    recent_blockhash: bytes
    instructions: Tuple[CompiledInstruction, ...]
    lookups: Tuple[AddressTableLookup, ...]

    @property
    def loaded_count(self) -> int:
        return sum(lk.count for lk in self.lookups)


def parse_message(data: Union[bytes, str]) -> RawMessage:
    """Parse wire bytes (or base64/0x-hex text). Raises MalformedEnvelope."""
    r = Reader(coerce_bytes(data))

    version: Optional[int] = None
    if r.peek_u8() & VERSION_PREFIX_MASK:
        version = r.read_u8() & 0x7F
        if version not in SUPPORTED_VERSIONS:
            raise MalformedEnvelope(f"unsupported message version {version}", offset=0)

    header = MessageHeader(*r.read_bytes(3, what="header"))

    n_static = r.read_length()
    static_keys = tuple(
        Address(r.read_bytes(ADDRESS_LEN, what="static address")) for _ in range(n_static)
    )
    blockhash = r.read_bytes(32, what="recent blockhash")

    instructions: List[CompiledInstruction] = []
    for _ in range(r.read_length()):
        program_index = r.read_u8()
        accounts = tuple(r.read_vec_u8(what="instruction accounts"))
        data_len = r.read_length()
        ix_data = r.read_bytes(data_len, what="instruction data")
        instructions.append(CompiledInstruction(program_index, accounts, ix_data))

    lookups: List[AddressTableLookup] = []
    if version is not None:
        for _ in range(r.read_length()):
            table = Address(r.read_bytes(ADDRESS_LEN, what="lookup table address"))
            writable = tuple(r.read_vec_u8(what="writable lookup indexes"))
            readonly = tuple(r.read_vec_u8(what="readonly lookup indexes"))
            if not writable and not readonly:
                raise MalformedEnvelope("address table lookup with no indexes", offset=r.offset, table=str(table))
            lookups.append(AddressTableLookup(table, writable, readonly))
    r.expect_end()

    _check_header(header, n_static)
    return RawMessage(
        version=version,
        header=header,
        static_keys=static_keys,
        recent_blockhash=blockhash,
        instructions=tuple(instructions),
        lookups=tuple(lookups),
    )


def _check_header(header: MessageHeader, n_static: int) -> None:
    required = header.num_required_signatures
    ro_signed = header.num_readonly_signed_accounts
    ro_unsigned = header.num_readonly_unsigned_accounts
    if required + ro_unsigned > n_static:
        raise MalformedEnvelope(
            "header partition counts exceed static key count",
            required=required,
            readonly_unsigned=ro_unsigned,
            static=n_static,
        )
    if required and ro_signed >= required:
        raise MalformedEnvelope("fee payer must be a writable signer", readonly_signed=ro_signed)
    if not required and ro_signed:
        raise MalformedEnvelope("readonly signed count without signers", readonly_signed=ro_signed)


def lookup_addresses(data: Union[bytes, str]) -> List[Address]:
    """Tables an envelope references, in lookup order. Used to prefetch."""
    return [lk.table for lk in parse_message(data).lookups]


def _static_flags(index: int, header: MessageHeader, n_static: int) -> Tuple[bool, bool]:
    required = header.num_required_signatures
    if index < required:
        return index < required - header.num_readonly_signed_accounts, True
    return index < n_static - header.num_readonly_unsigned_accounts, False


def decompile(envelope: Union[bytes, str], tables: Mapping[bytes, LookupTable]) -> Message:
    """
    Decompile a wire message against already-resolved lookup tables.

    Raises MalformedEnvelope for parse or consistency failures, UnknownTable /
    IndexOutOfRange when a lookup cannot be resolved.
    """
    raw = parse_message(envelope)
    n_static = len(raw.static_keys)

    entries: List[AccountEntry] = []
    for i, addr in enumerate(raw.static_keys):
        writable, signer = _static_flags(i, raw.header, n_static)
        entries.append(AccountEntry(addr, writable, signer))

    # Writable lookups of every table first, then readonly ones.
    for lk in raw.lookups:
        for addr in resolve_lookup(lk.table, lk.writable_indexes, tables):
            entries.append(AccountEntry(addr, True, False))
    for lk in raw.lookups:
        for addr in resolve_lookup(lk.table, lk.readonly_indexes, tables):
            entries.append(AccountEntry(addr, False, False))

    seen = set()
    for pos, entry in enumerate(entries):
        if entry.address in seen:
            raise MalformedEnvelope(
                "account appears twice in combined account list",
                address=str(entry.address),
                position=pos,
            )
        seen.add(entry.address)

    total = len(entries)
    for n, ix in enumerate(raw.instructions):
        if ix.program_index >= total:
            raise MalformedEnvelope(
                "instruction program index out of range",
                instruction=n,
                index=ix.program_index,
                accounts=total,
            )
        for idx in ix.account_indexes:
            if idx >= total:
                raise MalformedEnvelope(
                    "instruction account index out of range",
                    instruction=n,
                    index=idx,
                    accounts=total,
                )

    payer = raw.static_keys[0] if raw.header.num_required_signatures else None
    return Message(
        accounts=tuple(entries),
        instructions=raw.instructions,
        recent_blockhash=raw.recent_blockhash,
        payer=payer,
        address_table_lookups=raw.lookups,
        version=raw.version,
    )


def decompile_transaction(
    transaction: Union[bytes, str], tables: Mapping[bytes, LookupTable]
) -> Message:
    """Decompile the message carried by a full (signed or unsigned) transaction."""
    _, message = unwrap_transaction(coerce_bytes(transaction))
    return decompile(message, tables)


__all__ = [
    "RawMessage",
    "parse_message",
    "lookup_addresses",
    "decompile",
    "decompile_transaction",
]

"""
txcompose.compiler
==================

Intermediate `Message` → canonical v0 wire bytes. Exact inverse of
`txcompose.decompiler`.

Algorithm
---------
1. Partition accounts into the four ordering classes

       writable signers | readonly signers | writable non-signers | readonly non-signers

   keeping first-appearance order inside a class, with the fee payer pinned
   at static index 0.
2. For every non-signer, non-payer, non-program address ask
   `choose_encoding` for a reference against the candidate tables.
3. Drop the first table (in candidate order) whose lookups would not be
   cheaper than writing the same addresses inline, then re-run step 2 against
   the remaining tables until every used table pays for itself. The set of
   candidates only shrinks, so this terminates.
4. Re-number every instruction against

       static keys ++ writable lookups (table order) ++ readonly lookups (table order)

   A layout past 256 accounts or past the compact-length range is never
   serialized; when its estimated framed size is already over the size limit
   it is reported as SizeExceeded.
5. Serialize header, static keys, blockhash, instructions, lookups.

The output depends only on the message and the *order* of the candidate
tables, so identical inputs always produce identical bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .config import MAX_TX_BYTES
from .errors import (AccountLimitExceeded, DuplicateAddressConflict,
                     SizeExceeded)
from .resolver import choose_encoding
from .types import (AccountEntry, Address, AddressTableLookup,
                    CompiledInstruction, ComposedEnvelope, Indirect,
                    LookupTable, Message, MessageHeader)
from .wire import (ADDRESS_LEN, MAX_SHORTVEC, SIGNATURE_LEN, encode_length,
                   length_size)

logger = logging.getLogger(__name__)

MESSAGE_VERSION_0_PREFIX = 0x80
# u8 account indexes address at most 256 accounts.
MAX_ADDRESSABLE_ACCOUNTS = 256


@dataclass(frozen=True)
class CompiledMessage:
    """Structured compile result; `to_bytes()` is the wire form."""

    header: MessageHeader
    static_keys: Tuple[Address, ...]
    recent_blockhash: bytes
    instructions: Tuple[CompiledInstruction, ...]
    lookups: Tuple[AddressTableLookup, ...]
    loaded_writable: Tuple[Address, ...]
    loaded_readonly: Tuple[Address, ...]

    @property
    def account_keys(self) -> Tuple[Address, ...]:
        """Combined index space instructions refer to."""
        return self.static_keys + self.loaded_writable + self.loaded_readonly

    @property
    def signers(self) -> Tuple[Address, ...]:
        return self.static_keys[: self.header.num_required_signatures]

    def to_bytes(self) -> bytes:
        out = bytearray([MESSAGE_VERSION_0_PREFIX])
        out += self.header.to_bytes()
        out += encode_length(len(self.static_keys))
        for key in self.static_keys:
            out += key
        out += self.recent_blockhash
        out += encode_length(len(self.instructions))
        for ix in self.instructions:
            out.append(ix.program_index)
            out += encode_length(len(ix.account_indexes))
            out += bytes(ix.account_indexes)
            out += encode_length(len(ix.data))
            out += ix.data
        out += encode_length(len(self.lookups))
        for lk in self.lookups:
            out += lk.table
            out += encode_length(len(lk.writable_indexes))
            out += bytes(lk.writable_indexes)
            out += encode_length(len(lk.readonly_indexes))
            out += bytes(lk.readonly_indexes)
        return bytes(out)

    def envelope(self) -> ComposedEnvelope:
        return ComposedEnvelope(message=self.to_bytes(), required_signers=self.signers)


def lookup_saves_bytes(writable: int, readonly: int) -> bool:
    """True when referencing `writable + readonly` addresses through one table
    is strictly smaller than writing them inline."""
    n = writable + readonly
    indirect = ADDRESS_LEN + length_size(writable) + writable + length_size(readonly) + readonly
    return indirect < ADDRESS_LEN * n


def _vec_size(n: int) -> int:
    # Lengths past 0xFFFF cannot be encoded; count them as 3 bytes for the estimate.
    return 1 if n < 0x80 else 2 if n < 0x4000 else 3


def estimated_size(
    num_signers: int,
    num_static: int,
    instructions: Sequence[CompiledInstruction],
    lookups: Sequence[AddressTableLookup],
) -> int:
    """
    Framed transaction size computed from counts alone, so it is available
    for layouts that cannot be serialized (too many accounts, or a length
    past the compact-length range).
    """
    size = 1 + 3 + _vec_size(num_static) + ADDRESS_LEN * num_static + ADDRESS_LEN
    size += _vec_size(len(instructions))
    for ix in instructions:
        n = len(ix.account_indexes)
        size += 1 + _vec_size(n) + n + _vec_size(len(ix.data)) + len(ix.data)
    size += _vec_size(len(lookups))
    for lk in lookups:
        w, r = len(lk.writable_indexes), len(lk.readonly_indexes)
        size += ADDRESS_LEN + _vec_size(w) + w + _vec_size(r) + r
    return _vec_size(num_signers) + SIGNATURE_LEN * num_signers + size


def _encodable(message: Message, num_accounts: int) -> bool:
    if num_accounts > MAX_ADDRESSABLE_ACCOUNTS or len(message.instructions) > MAX_SHORTVEC:
        return False
    return all(
        len(ix.data) <= MAX_SHORTVEC and len(ix.account_indexes) <= MAX_SHORTVEC
        for ix in message.instructions
    )


def _classify(message: Message) -> Tuple[List[AccountEntry], ...]:
    payer = message.payer
    ws: List[AccountEntry] = []
    rs: List[AccountEntry] = []
    wn: List[AccountEntry] = []
    rn: List[AccountEntry] = []
    if payer is not None:
        ws.append(AccountEntry(payer, True, True))
    for entry in message.accounts:
        if payer is not None and entry.address == payer:
            continue
        if entry.signer:
            (ws if entry.writable else rs).append(entry)
        else:
            (wn if entry.writable else rn).append(entry)
    return ws, rs, wn, rn


def _assign_lookups(
    candidates: Sequence[AccountEntry],
    tables: Sequence[LookupTable],
    invoked: set,
) -> Tuple[Dict[bytes, Indirect], List[LookupTable]]:
    remaining = list(tables)
    while True:
        assigned: Dict[bytes, Indirect] = {}
        per_table: Dict[bytes, List[int]] = {}
        for entry in candidates:
            ref = choose_encoding(
                entry.address,
                entry.signer,
                False,
                remaining,
                writable=entry.writable,
                is_invoked=entry.address in invoked,
            )
            if isinstance(ref, Indirect):
                assigned[entry.address] = ref
                counts = per_table.setdefault(ref.table, [0, 0])
                counts[0 if ref.writable else 1] += 1
        losing = next(
            (
                t.address
                for t in remaining
                if t.address in per_table and not lookup_saves_bytes(*per_table[t.address])
            ),
            None,
        )
        if losing is None:
            used = [t for t in remaining if t.address in per_table]
            return assigned, used
        # Drop one table at a time; its addresses may make a later table pay off.
        remaining = [t for t in remaining if t.address != losing]


def plan(
    message: Message,
    candidate_tables: Sequence[LookupTable] = (),
    *,
    max_tx_bytes: int = MAX_TX_BYTES,
) -> CompiledMessage:
    """
    Compute the compiled layout of `message`.

    A layout that cannot be serialized raises SizeExceeded (against
    `max_tx_bytes`) when its framed size is already over the limit, otherwise
    AccountLimitExceeded past 256 accounts. DuplicateAddressConflict means the
    layout would hold an address twice (internal consistency failure).
    """
    ws, rs, wn, rn = _classify(message)
    # First snapshot of a table address wins, matching its position.
    unique: Dict[bytes, LookupTable] = {}
    for table in candidate_tables:
        unique.setdefault(table.address, table)
    candidate_tables = list(unique.values())
    invoked = set(message.program_ids())

    assigned, used_tables = _assign_lookups(wn + rn, candidate_tables, invoked)

    static_entries = ws + rs + [e for e in wn if e.address not in assigned]
    static_ro_unsigned = [e for e in rn if e.address not in assigned]
    static_keys = tuple(e.address for e in static_entries + static_ro_unsigned)

    lookups: List[AddressTableLookup] = []
    loaded_writable: List[Address] = []
    loaded_readonly: List[Address] = []
    for table in used_tables:
        w_addrs = [e.address for e in wn if e.address in assigned and assigned[e.address].table == table.address]
        r_addrs = [e.address for e in rn if e.address in assigned and assigned[e.address].table == table.address]
        lookups.append(
            AddressTableLookup(
                table.address,
                tuple(assigned[a].index for a in w_addrs),
                tuple(assigned[a].index for a in r_addrs),
            )
        )
        loaded_writable.extend(w_addrs)
        loaded_readonly.extend(r_addrs)

    combined = static_keys + tuple(loaded_writable) + tuple(loaded_readonly)
    if not _encodable(message, len(combined)):
        size = estimated_size(len(ws) + len(rs), len(static_keys), message.instructions, lookups)
        if size > max_tx_bytes:
            raise SizeExceeded(limit=max_tx_bytes, actual=size)
    if len(combined) > MAX_ADDRESSABLE_ACCOUNTS:
        raise AccountLimitExceeded(limit=MAX_ADDRESSABLE_ACCOUNTS, actual=len(combined))
    positions: Dict[bytes, int] = {}
    for i, addr in enumerate(combined):
        if addr in positions:
            raise DuplicateAddressConflict(address=str(addr), where="compiled account keys")
        positions[addr] = i
    slot_keys = [(lk.table, i) for lk in lookups for i in lk.writable_indexes + lk.readonly_indexes]
    if len(slot_keys) != len(set(slot_keys)):
        raise DuplicateAddressConflict(address="<lookup slot>", where="address table lookups")

    def renumber(i: int) -> int:
        return positions[message.accounts[i].address]

    instructions = tuple(
        CompiledInstruction(
            renumber(ix.program_index),
            tuple(renumber(i) for i in ix.account_indexes),
            ix.data,
        )
        for ix in message.instructions
    )

    header = MessageHeader(
        num_required_signatures=len(ws) + len(rs),
        num_readonly_signed_accounts=len(rs),
        num_readonly_unsigned_accounts=len(static_ro_unsigned),
    )
    logger.debug(
        "compiled message",
        extra={
            "static": len(static_keys),
            "loaded": len(loaded_writable) + len(loaded_readonly),
            "tables": len(lookups),
            "instructions": len(instructions),
        },
    )
    return CompiledMessage(
        header=header,
        static_keys=static_keys,
        recent_blockhash=message.recent_blockhash,
        instructions=instructions,
        lookups=tuple(lookups),
        loaded_writable=tuple(loaded_writable),
        loaded_readonly=tuple(loaded_readonly),
    )


def compile_message(message: Message, candidate_tables: Sequence[LookupTable] = ()) -> bytes:
    """Compile `message` to canonical v0 wire bytes."""
    return plan(message, candidate_tables).to_bytes()


def compile_envelope(
    message: Message, candidate_tables: Sequence[LookupTable] = ()
) -> ComposedEnvelope:
    return plan(message, candidate_tables).envelope()


__all__ = [
    "CompiledMessage",
    "lookup_saves_bytes",
    "estimated_size",
    "plan",
    "compile_message",
    "compile_envelope",
]

"""
txcompose.resolver
==================

Address resolution against lookup-table snapshots, in both directions:

  • resolve(ref, tables)            AccountRef → concrete Address
  • choose_encoding(address, ...)   Address → cheapest AccountRef

plus the table-fetch collaborator seam. Fetching is an *external* step that
happens before composition; the helpers here only adapt a caller-supplied
fetcher (sync or async) into an immutable `{address: LookupTable}` snapshot.

Determinism
-----------
`choose_encoding` scans candidate tables in the order supplied and takes the
first table (and the first position within it) holding the address. Two
compositions over the same inputs therefore choose identical references.
"""

from __future__ import annotations

import asyncio
import logging
from typing import (Awaitable, Dict, Iterable, Mapping, Optional, Protocol,
                    Sequence)

from .errors import IndexOutOfRange, UnknownTable
from .types import AccountRef, Address, Direct, Indirect, LookupTable

logger = logging.getLogger(__name__)


# -----------------------------
# Resolution
# -----------------------------


def resolve(ref: AccountRef, tables: Mapping[bytes, LookupTable]) -> Address:
    """
    Resolve a reference to its concrete address.

    Raises UnknownTable if an Indirect ref names a table missing from `tables`,
    IndexOutOfRange if its index is past the table's last entry.
    """
    if isinstance(ref, Direct):
        return ref.address
    table = tables.get(ref.table)
    if table is None:
        raise UnknownTable(table=str(ref.table))
    if ref.index >= len(table.entries):
        raise IndexOutOfRange(table=str(ref.table), index=ref.index, size=len(table.entries))
    return table.entries[ref.index]


def resolve_lookup(
    table_address: bytes, indexes: Iterable[int], tables: Mapping[bytes, LookupTable]
) -> list[Address]:
    """Resolve a run of indexes into one table (decompiler fast path)."""
    table = tables.get(table_address)
    if table is None:
        raise UnknownTable(table=str(Address(table_address)))
    out = []
    size = len(table.entries)
    for i in indexes:
        if i >= size:
            raise IndexOutOfRange(table=str(table.address), index=i, size=size)
        out.append(table.entries[i])
    return out


def choose_encoding(
    address: bytes,
    is_signer: bool,
    is_payer: bool,
    candidate_tables: Sequence[LookupTable],
    *,
    writable: bool = False,
    is_invoked: bool = False,
) -> AccountRef:
    """
    Pick how `address` should be referenced in a compiled message.

    Signers, the fee payer and invoked program ids always stay Direct.
    Everything else becomes Indirect into the first candidate table holding
    it, or Direct when no table does.
    """
    address = Address(address)
    if is_signer or is_payer or is_invoked:
        return Direct(address, writable=writable, signer=is_signer)
    for table in candidate_tables:
        idx = table.index_of(address)
        if idx is not None:
            return Indirect(table.address, idx, writable=writable)
    return Direct(address, writable=writable, signer=False)


# -----------------------------
# Fetch collaborators
# -----------------------------


class TableFetcher(Protocol):
    """Read-only accessor for lookup tables. Returns None when not found."""

    def fetch(self, table_address: Address) -> Optional[LookupTable]:  # pragma: no cover - protocol
        ...


class AsyncTableFetcher(Protocol):
    def fetch(self, table_address: Address) -> Awaitable[Optional[LookupTable]]:  # pragma: no cover - protocol
        ...


def _dedup(addresses: Iterable[bytes]) -> list[Address]:
    seen: Dict[bytes, None] = {}
    for a in addresses:
        seen.setdefault(bytes(a), None)
    return [Address(a) for a in seen]


def fetch_tables(
    fetcher: TableFetcher, addresses: Iterable[bytes]
) -> Dict[Address, LookupTable]:
    """
    Fetch each table once, in first-seen order. A table the fetcher cannot
    find raises UnknownTable; nothing is retried here.
    """
    out: Dict[Address, LookupTable] = {}
    for addr in _dedup(addresses):
        table = fetcher.fetch(addr)
        if table is None:
            raise UnknownTable(table=str(addr))
        out[addr] = table
        logger.debug("fetched lookup table", extra={"table": str(addr), "entries": len(table)})
    return out


async def gather_tables(
    fetcher: AsyncTableFetcher, addresses: Iterable[bytes]
) -> Dict[Address, LookupTable]:
    """
    Concurrent variant of `fetch_tables`. Result order follows `addresses`
    regardless of completion order, so downstream choices stay deterministic.
    """
    wanted = _dedup(addresses)
    results = await asyncio.gather(*(fetcher.fetch(a) for a in wanted))
    out: Dict[Address, LookupTable] = {}
    for addr, table in zip(wanted, results):
        if table is None:
            raise UnknownTable(table=str(addr))
        out[addr] = table
    return out


__all__ = [
    "resolve",
    "resolve_lookup",
    "choose_encoding",
    "TableFetcher",
    "AsyncTableFetcher",
    "fetch_tables",
    "gather_tables",
]

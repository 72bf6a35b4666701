from __future__ import annotations

import asyncio
import struct

import pytest

from txcompose.errors import IndexOutOfRange, MalformedEnvelope, UnknownTable
from txcompose.resolver import (choose_encoding, fetch_tables, gather_tables,
                                resolve, resolve_lookup)
from txcompose.tests import ACC_X, ACC_Y, TABLE_A, key
from txcompose.types import Address, Direct, Indirect, LookupTable

TABLE_B = key(801)


def _tables(*tables: LookupTable) -> dict:
    return {t.address: t for t in tables}


# -------------------------
# resolve
# -------------------------


def test_resolve_direct_needs_no_tables():
    assert resolve(Direct(ACC_X, writable=True), {}) == ACC_X


def test_resolve_indirect(table_a: LookupTable):
    assert resolve(Indirect(TABLE_A, 1), _tables(table_a)) == ACC_Y


def test_resolve_unknown_table_is_retryable():
    with pytest.raises(UnknownTable) as ei:
        resolve(Indirect(TABLE_A, 0), {})
    assert ei.value.retryable
    assert ei.value.context["table"] == str(TABLE_A)


def test_resolve_index_past_end(table_a: LookupTable):
    with pytest.raises(IndexOutOfRange) as ei:
        resolve(Indirect(TABLE_A, 2), _tables(table_a))
    assert ei.value.context == {"table": str(TABLE_A), "index": 2, "size": 2}


def test_resolve_lookup_batch(table_a: LookupTable):
    assert resolve_lookup(TABLE_A, [1, 0], _tables(table_a)) == [ACC_Y, ACC_X]
    with pytest.raises(IndexOutOfRange):
        resolve_lookup(TABLE_A, [0, 5], _tables(table_a))
    with pytest.raises(UnknownTable):
        resolve_lookup(TABLE_B, [0], _tables(table_a))


def test_indirect_index_must_fit_u8():
    with pytest.raises(ValueError):
        Indirect(TABLE_A, 256)
    assert Indirect(TABLE_A, 255).signer is False


# -------------------------
# choose_encoding
# -------------------------


def test_choose_encoding_first_table_wins(table_a: LookupTable):
    other = LookupTable(TABLE_B, (ACC_Y, ACC_X))
    ref = choose_encoding(ACC_X, False, False, [other, table_a], writable=True)
    assert ref == Indirect(TABLE_B, 1, writable=True)
    ref = choose_encoding(ACC_X, False, False, [table_a, other])
    assert ref == Indirect(TABLE_A, 0, writable=False)


def test_choose_encoding_first_position_within_table():
    t = LookupTable(TABLE_B, (key(5), ACC_X, ACC_X))
    assert choose_encoding(ACC_X, False, False, [t]) == Indirect(TABLE_B, 1)


@pytest.mark.parametrize(
    "signer,payer,invoked",
    [(True, False, False), (False, True, False), (False, False, True)],
)
def test_choose_encoding_keeps_required_accounts_direct(table_a, signer, payer, invoked):
    ref = choose_encoding(ACC_X, signer, payer, [table_a], writable=True, is_invoked=invoked)
    assert isinstance(ref, Direct)
    assert ref.writable and ref.signer == signer


def test_choose_encoding_absent_address_is_direct(table_a: LookupTable):
    assert choose_encoding(key(77), False, False, [table_a]) == Direct(key(77))


def test_choose_encoding_ignores_positions_past_u8():
    entries = tuple(key(1000 + i) for i in range(256)) + (ACC_X,)
    t = LookupTable(TABLE_B, entries)
    assert len(t) == 257
    assert t.index_of(ACC_X) is None
    assert isinstance(choose_encoding(ACC_X, False, False, [t]), Direct)


# -------------------------
# on-chain table layout
# -------------------------


def _table_account(entries, *, deactivation=(1 << 64) - 1, authority=None) -> bytes:
    meta = struct.pack("<IQQB", 1, deactivation, 42, 0)
    if authority is None:
        meta += b"\x00" + bytes(32)
    else:
        meta += b"\x01" + bytes(authority)
    meta += b"\x00\x00"
    assert len(meta) == 56
    return meta + b"".join(bytes(e) for e in entries)


def test_lookup_table_from_account_data():
    auth = key(3)
    t = LookupTable.from_account_data(str(TABLE_A), _table_account([ACC_X, ACC_Y], authority=auth))
    assert t.address == TABLE_A
    assert t.entries == (ACC_X, ACC_Y)
    assert t.is_active
    assert t.authority == auth
    assert t.last_extended_slot == 42


def test_lookup_table_deactivated_and_frozen():
    t = LookupTable.from_account_data(TABLE_A, _table_account([ACC_X], deactivation=1234))
    assert t.deactivation_slot == 1234
    assert not t.is_active
    assert t.authority is None


@pytest.mark.parametrize(
    "data",
    [
        b"\x01\x00\x00\x00" + bytes(20),
        struct.pack("<I", 2) + bytes(52),
        _table_account([ACC_X]) + b"\x00",
    ],
)
def test_lookup_table_rejects_bad_account_data(data: bytes):
    with pytest.raises(MalformedEnvelope):
        LookupTable.from_account_data(TABLE_A, data)


def test_address_text_forms():
    a = Address(b"\x00" * 32)
    assert str(a) == "11111111111111111111111111111111"
    assert Address(str(ACC_X)) == ACC_X
    assert repr(a) == "Address('11111111111111111111111111111111')"
    with pytest.raises(ValueError):
        Address(b"\x00" * 31)
    with pytest.raises(ValueError):
        Address("0OIl")
    with pytest.raises(TypeError):
        Address(5)  # type: ignore[arg-type]


# -------------------------
# fetch collaborators
# -------------------------


class DictFetcher:
    def __init__(self, tables):
        self.tables = {t.address: t for t in tables}
        self.calls = []

    def fetch(self, table_address):
        self.calls.append(table_address)
        return self.tables.get(table_address)


class AsyncDictFetcher(DictFetcher):
    async def fetch(self, table_address):  # type: ignore[override]
        await asyncio.sleep(0)
        return DictFetcher.fetch(self, table_address)


def test_fetch_tables_dedups_in_first_seen_order(table_a: LookupTable):
    other = LookupTable(TABLE_B, (key(9),))
    f = DictFetcher([table_a, other])
    got = fetch_tables(f, [TABLE_B, TABLE_A, TABLE_B])
    assert list(got) == [TABLE_B, TABLE_A]
    assert f.calls == [TABLE_B, TABLE_A]


def test_fetch_tables_missing_raises(table_a: LookupTable):
    with pytest.raises(UnknownTable):
        fetch_tables(DictFetcher([table_a]), [TABLE_A, TABLE_B])


def test_gather_tables_keeps_request_order(table_a: LookupTable):
    other = LookupTable(TABLE_B, (key(9),))
    got = asyncio.run(gather_tables(AsyncDictFetcher([table_a, other]), [TABLE_B, TABLE_A]))
    assert list(got) == [TABLE_B, TABLE_A]
    with pytest.raises(UnknownTable):
        asyncio.run(gather_tables(AsyncDictFetcher([]), [TABLE_A]))

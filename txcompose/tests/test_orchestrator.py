from __future__ import annotations

import asyncio
import base64

import pytest
from prometheus_client import CollectorRegistry

from txcompose.budget import set_compute_unit_limit
from txcompose.config import MAX_TX_BYTES, ComposerConfig, Limits
from txcompose.decompiler import decompile, parse_message
from txcompose.errors import (ComputeExceeded, MalformedEnvelope,
                              SizeExceeded, UnknownTable)
from txcompose.metrics import ComposerMetrics
from txcompose.orchestrator import (Composed, Composer, Rejected, Stage,
                                    aprefetch_tables, compose,
                                    prefetch_tables, required_tables)
from txcompose.tests import (ACC_X, ACC_Y, PAYER, PROGRAM_A, RECIPIENT,
                             SYSTEM_PROGRAM, TABLE_A, encode_message, key,
                             transfer)
from txcompose.types import (Direct, Indirect, Instruction, LookupTable,
                             MessageHeader)
from txcompose.wire import frame_transaction, unwrap_transaction


def test_fee_transfer_keeps_routed_accounts_in_table(routed_message, table_a):
    outcome = compose(routed_message, [transfer(PAYER, RECIPIENT, 5_000)], [table_a])
    assert isinstance(outcome, Composed)
    assert outcome.stages == (
        Stage.RECEIVED,
        Stage.DECOMPILED,
        Stage.SPLICED,
        Stage.COMPILED,
        Stage.VALIDATED,
        Stage.COMPOSED,
    )

    cm = outcome.compiled
    # Payer (signer) first, recipient (non-signer) after it, both inline.
    assert cm.static_keys[:2] == (PAYER, RECIPIENT)
    assert cm.header.num_required_signatures == 1
    assert ACC_X not in cm.static_keys and ACC_Y not in cm.static_keys
    assert [(lk.table, lk.writable_indexes, lk.readonly_indexes) for lk in cm.lookups] == [
        (TABLE_A, (0,), (1,))
    ]
    assert outcome.envelope.required_signers == (PAYER,)
    assert outcome.envelope.size < MAX_TX_BYTES

    back = decompile(outcome.message, {TABLE_A: table_a})
    routed = back.instructions[0]
    assert back.accounts[routed.program_index].address == PROGRAM_A
    assert [back.accounts[i].address for i in routed.account_indexes] == [ACC_X, ACC_Y]
    assert routed.data == b"\x01route"


def test_readonly_account_widened_to_writable():
    ro = key(20)
    source = encode_message(
        header=(1, 0, 2),
        static_keys=[PAYER, ro, PROGRAM_A],
        instructions=[(2, [0, 1], b"")],
    )
    before = parse_message(source).header
    assert before == MessageHeader(1, 0, 2)

    outcome = compose(source, [Instruction(PROGRAM_A, (Direct(ro, writable=True),))], [])
    assert isinstance(outcome, Composed)
    after = outcome.compiled.header
    assert after == MessageHeader(1, 0, 1)
    pos = outcome.compiled.static_keys.index(ro)
    assert pos < len(outcome.compiled.static_keys) - after.num_readonly_unsigned_accounts


def test_compose_is_deterministic(routed_message, table_a):
    extra = [transfer(PAYER, RECIPIENT, 5_000)]
    first = compose(routed_message, extra, [table_a])
    second = compose(routed_message, extra, {TABLE_A: table_a})
    assert first.envelope.message == second.envelope.message


def test_transaction_and_base64_inputs(routed_message, table_a):
    tx = frame_transaction([], routed_message)
    extra = [transfer(PAYER, RECIPIENT, 1)]
    a = compose(tx, extra, [table_a], is_transaction=True)
    b = compose(base64.b64encode(routed_message).decode(), extra, [table_a])
    assert isinstance(a, Composed) and isinstance(b, Composed)
    assert a.message == b.message


def test_source_tables_come_first_in_candidate_order(routed_message, table_a):
    # A second table also holding ACC_X and ACC_Y must not steal them when it
    # is listed before the source's own table.
    rival = LookupTable(key(801), (ACC_Y, ACC_X))
    outcome = compose(routed_message, [transfer(PAYER, RECIPIENT, 1)], [rival, table_a])
    assert [lk.table for lk in outcome.compiled.lookups] == [TABLE_A]

    explicit = compose(
        routed_message,
        [transfer(PAYER, RECIPIENT, 1)],
        [rival, table_a],
        candidate_tables=[rival.address],
    )
    assert [lk.table for lk in explicit.compiled.lookups] == [rival.address]


def test_unknown_candidate_table_is_rejected(routed_message, table_a):
    outcome = compose(routed_message, [], [table_a], candidate_tables=[key(999)])
    assert isinstance(outcome, Rejected)
    assert isinstance(outcome.error, UnknownTable)
    assert outcome.stage is Stage.SPLICED


def test_extra_tables_shrink_new_accounts(routed_message, table_a):
    fees = LookupTable(key(802), (RECIPIENT, key(21)))
    ix = Instruction(
        SYSTEM_PROGRAM,
        (Direct(PAYER, True, True), Direct(RECIPIENT, writable=True), Direct(key(21))),
    )
    outcome = compose(routed_message, [ix], [table_a, fees])
    assert RECIPIENT not in outcome.compiled.static_keys
    assert [lk.table for lk in outcome.compiled.lookups] == [TABLE_A, fees.address]


# -------------------------
# rejections
# -------------------------


def test_missing_table_rejected_at_receive(routed_message):
    outcome = compose(routed_message, [transfer(PAYER, RECIPIENT, 1)], [])
    assert isinstance(outcome, Rejected)
    assert isinstance(outcome.error, UnknownTable)
    assert outcome.error.retryable
    assert outcome.stage is Stage.RECEIVED
    assert outcome.reason == "unknown_table"


def test_garbage_rejected():
    outcome = compose(b"\x80\x01", [], [])
    assert isinstance(outcome, Rejected)
    assert isinstance(outcome.error, MalformedEnvelope)
    assert not outcome.ok


def test_oversize_never_composes(routed_message, table_a):
    big = Instruction(PROGRAM_A, (Direct(PAYER, True, True),), b"\x00" * 1100)
    outcome = compose(routed_message, [big], [table_a])
    assert isinstance(outcome, Rejected)
    assert isinstance(outcome.error, SizeExceeded)
    assert outcome.stage is Stage.COMPILED
    with pytest.raises(SizeExceeded):
        Composer().compose_or_raise(routed_message, [big], [table_a])


def test_data_past_compact_length_range_is_size_rejection(routed_message, table_a):
    huge = Instruction(PROGRAM_A, (Direct(PAYER, True, True),), b"\x00" * 70_000)
    outcome = compose(routed_message, [huge], [table_a])
    assert isinstance(outcome, Rejected)
    assert isinstance(outcome.error, SizeExceeded)
    assert outcome.error.limit == MAX_TX_BYTES
    assert outcome.error.actual > 70_000
    assert outcome.stage is Stage.SPLICED


def test_too_many_accounts_reported_as_size_when_oversized(routed_message, table_a):
    wide = Instruction(PROGRAM_A, (Direct(PAYER, True, True),) + tuple(Direct(key(3000 + i)) for i in range(300)))
    outcome = compose(routed_message, [wide], [table_a])
    assert isinstance(outcome, Rejected)
    assert isinstance(outcome.error, SizeExceeded)
    assert outcome.error.actual > 300 * 32
    assert outcome.stage is Stage.SPLICED


def test_unencodable_layout_uses_configured_size_limit(routed_message, table_a):
    composer = Composer(ComposerConfig(limits=Limits(max_tx_bytes=600)))
    big = Instruction(PROGRAM_A, data=b"\x01" * (0xFFFF + 1))
    outcome = composer.compose(routed_message, [big], [table_a])
    assert isinstance(outcome.error, SizeExceeded)
    assert outcome.error.limit == 600


def test_compute_limit_instruction_rejected(routed_message, table_a):
    outcome = compose(routed_message, [set_compute_unit_limit(1_500_000)], [table_a])
    assert isinstance(outcome.error, ComputeExceeded)


def test_explicit_compute_units_override(routed_message, table_a):
    outcome = compose(routed_message, [], [table_a], compute_units=2_000_000)
    assert isinstance(outcome.error, ComputeExceeded)
    ok = compose(routed_message, [], [table_a], compute_units=1_000)
    assert ok.compute_units == 1_000


def test_lowered_limits_apply(routed_message, table_a):
    composer = Composer(ComposerConfig(limits=Limits(max_tx_bytes=200)))
    outcome = composer.compose(routed_message, [transfer(PAYER, RECIPIENT, 1)], [table_a])
    assert isinstance(outcome.error, SizeExceeded)
    assert outcome.error.limit == 200


def test_raising_limits_is_refused():
    with pytest.raises(ValueError):
        Composer(ComposerConfig(limits=Limits(max_tx_bytes=MAX_TX_BYTES + 1)))


def test_indirect_ref_in_extra_instruction(routed_message, table_a):
    ix = Instruction(PROGRAM_A, (Direct(PAYER, True, True), Indirect(TABLE_A, 1, writable=True)))
    outcome = compose(routed_message, [ix], [table_a])
    back = decompile(outcome.message, {TABLE_A: table_a})
    assert back.entry(ACC_Y).writable


# -------------------------
# signing seam, metrics, prefetch
# -------------------------


class FakeSigner:
    def sign(self, message, address):
        return bytes(address)[:32] * 2


def test_signed_transaction_layout(routed_message, table_a):
    outcome = compose(routed_message, [transfer(PAYER, RECIPIENT, 1)], [table_a])
    env = outcome.envelope
    signed = env.sign_with(FakeSigner())
    sigs, message = unwrap_transaction(signed)
    assert message == env.message
    assert sigs == (bytes(PAYER) * 2,)
    assert len(signed) == env.size
    unsigned = env.to_unsigned_transaction()
    assert unwrap_transaction(unsigned)[0] == (bytes(64),)
    with pytest.raises(KeyError):
        env.attach_signatures({})


def test_metrics_recorded(routed_message, table_a):
    reg = CollectorRegistry()
    composer = Composer(metrics=ComposerMetrics(reg))
    composer.compose(routed_message, [transfer(PAYER, RECIPIENT, 1)], [table_a])
    composer.compose(routed_message, [], [])
    assert reg.get_sample_value("txcompose_compose_total", {"outcome": "composed"}) == 1.0
    assert reg.get_sample_value("txcompose_compose_total", {"outcome": "rejected"}) == 1.0
    assert reg.get_sample_value("txcompose_reject_total", {"reason": "unknown_table"}) == 1.0
    assert reg.get_sample_value("txcompose_lookup_accounts_sum") == 2.0
    assert reg.get_sample_value("txcompose_compose_seconds_count") == 2.0


class _Fetcher:
    def __init__(self, *tables):
        self.tables = {t.address: t for t in tables}

    def fetch(self, table_address):
        return self.tables.get(table_address)


class _AsyncFetcher(_Fetcher):
    async def fetch(self, table_address):  # type: ignore[override]
        return self.tables.get(table_address)


def test_prefetch_then_compose(routed_message, table_a):
    assert required_tables(routed_message) == [TABLE_A]
    tables = prefetch_tables(routed_message, _Fetcher(table_a))
    assert isinstance(compose(routed_message, [], tables), Composed)
    tables = asyncio.run(aprefetch_tables(routed_message, _AsyncFetcher(table_a)))
    assert list(tables) == [TABLE_A]
    with pytest.raises(UnknownTable):
        prefetch_tables(routed_message, _Fetcher())


def test_concurrent_compositions_are_independent(routed_message, table_a):
    from concurrent.futures import ThreadPoolExecutor

    composer = Composer()
    extras = [[transfer(PAYER, key(100 + i), i + 1)] for i in range(8)]
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda e: composer.compose(routed_message, e, [table_a]), extras))
    serial = [composer.compose(routed_message, e, [table_a]) for e in extras]
    assert [r.message for r in results] == [s.message for s in serial]
    assert len({r.message for r in results}) == len(extras)

"""
txcompose.orchestrator
======================

Public entry point: decompile → splice → compile → validate.

    Received → Decompiled → Spliced → Compiled → Validated → {Composed | Rejected}

The state machine is linear. Any engine error ends the call with `Rejected`
carrying that error and the last stage reached; no partial output escapes.
A `Composer` holds only immutable configuration and an optional metrics sink,
so one instance can serve concurrent calls from threads or asyncio tasks.

Table fetching is *not* part of composition. Callers resolve tables first,
optionally with `prefetch_tables` / `aprefetch_tables`, and pass the snapshot in.

Typical use
-----------
    tables = prefetch_tables(swap_tx, fetcher, is_transaction=True)
    outcome = compose(swap_tx, [fee_transfer], tables, is_transaction=True)
    if isinstance(outcome, Composed):
        signed = outcome.envelope.sign_with(wallet)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import logging as tlog
from .budget import Violation, declared_compute_units, validate
from .compiler import CompiledMessage, plan
from .config import ComposerConfig
from .decompiler import decompile, lookup_addresses
from .errors import ComposeError, UnknownTable
from .metrics import ComposerMetrics
from .resolver import AsyncTableFetcher, TableFetcher, fetch_tables, gather_tables
from .splicer import extend
from .types import (Address, ComposedEnvelope, Instruction, LookupTable,
                    Message, TablesArg, table_map)
from .wire import coerce_bytes, unwrap_transaction

logger = logging.getLogger(__name__)

EnvelopeArg = Union[bytes, bytearray, memoryview, str]


class Stage(str, Enum):
    RECEIVED = "received"
    DECOMPILED = "decompiled"
    SPLICED = "spliced"
    COMPILED = "compiled"
    VALIDATED = "validated"
    COMPOSED = "composed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Composed:
    envelope: ComposedEnvelope
    compiled: CompiledMessage
    compute_units: int
    stages: Tuple[Stage, ...]

    ok = True

    @property
    def message(self) -> bytes:
        return self.envelope.message


@dataclass(frozen=True)
class Rejected:
    error: ComposeError
    stage: Stage

    ok = False

    @property
    def reason(self) -> str:
        return self.error.reason


Outcome = Union[Composed, Rejected]


# -----------------------------
# Input helpers
# -----------------------------


def _message_bytes(envelope: EnvelopeArg, is_transaction: bool) -> bytes:
    raw = coerce_bytes(envelope)
    if is_transaction:
        _, raw = unwrap_transaction(raw)
    return raw


def _candidate_order(
    message: Message,
    tables: Dict[Address, LookupTable],
    explicit: Optional[Sequence[Union[LookupTable, bytes, str]]],
) -> List[LookupTable]:
    """
    Explicit candidates win. Otherwise: tables the source envelope used, in
    lookup order, then every other available table in the order supplied.
    """
    if explicit is not None:
        out = []
        for item in explicit:
            if isinstance(item, LookupTable):
                out.append(item)
                continue
            addr = Address(item)
            if addr not in tables:
                raise UnknownTable(table=str(addr))
            out.append(tables[addr])
        return out
    ordered: Dict[Address, LookupTable] = {}
    for lk in message.address_table_lookups:
        if lk.table in tables:
            ordered.setdefault(lk.table, tables[lk.table])
    for addr, table in tables.items():
        ordered.setdefault(addr, table)
    return list(ordered.values())


def required_tables(envelope: EnvelopeArg, *, is_transaction: bool = False) -> List[Address]:
    """Lookup tables an envelope references, in lookup order."""
    return lookup_addresses(_message_bytes(envelope, is_transaction))


def prefetch_tables(
    envelope: EnvelopeArg,
    fetcher: TableFetcher,
    *,
    is_transaction: bool = False,
    extra: Iterable[bytes] = (),
) -> Dict[Address, LookupTable]:
    """Fetch the envelope's tables (plus `extra` candidates) before composing."""
    wanted = list(required_tables(envelope, is_transaction=is_transaction)) + list(extra)
    return fetch_tables(fetcher, wanted)


async def aprefetch_tables(
    envelope: EnvelopeArg,
    fetcher: AsyncTableFetcher,
    *,
    is_transaction: bool = False,
    extra: Iterable[bytes] = (),
) -> Dict[Address, LookupTable]:
    wanted = list(required_tables(envelope, is_transaction=is_transaction)) + list(extra)
    return await gather_tables(fetcher, wanted)


# -----------------------------
# Composer
# -----------------------------


class Composer:
    def __init__(
        self,
        config: Optional[ComposerConfig] = None,
        metrics: Optional[ComposerMetrics] = None,
    ) -> None:
        self.config = config or ComposerConfig()
        self.config.validate()
        self.metrics = metrics

    def compose(
        self,
        envelope: EnvelopeArg,
        extra_instructions: Iterable[Instruction] = (),
        available_tables: Optional[TablesArg] = None,
        *,
        candidate_tables: Optional[Sequence[Union[LookupTable, bytes, str]]] = None,
        compute_units: Optional[int] = None,
        is_transaction: bool = False,
        trace_id: Optional[str] = None,
    ) -> Outcome:
        """
        Compose `extra_instructions` into `envelope`. Never raises engine
        errors; they come back as `Rejected`.
        """
        started = time.perf_counter()
        tables = table_map(available_tables)
        stages: List[Stage] = [Stage.RECEIVED]

        def advance(stage: Stage, **fields: object) -> None:
            stages.append(stage)
            tlog.bind(stage=stage.value)
            logger.debug("stage reached", extra=fields)

        with tlog.trace_scope(trace_id):
            tlog.bind(component="composer", stage=Stage.RECEIVED.value)
            try:
                raw = _message_bytes(envelope, is_transaction)
                message = decompile(raw, tables)
                advance(Stage.DECOMPILED, accounts=len(message.accounts))

                message = extend(message, extra_instructions, tables)
                advance(Stage.SPLICED, instructions=len(message.instructions))

                compiled = plan(
                    message,
                    _candidate_order(message, tables, candidate_tables),
                    max_tx_bytes=self.config.limits.max_tx_bytes,
                )
                wire = compiled.to_bytes()
                advance(Stage.COMPILED, message_bytes=len(wire), tables=len(compiled.lookups))

                units = compute_units if compute_units is not None else declared_compute_units(message)
                verdict = validate(wire, units, limits=self.config.limits)
                if isinstance(verdict, Violation):
                    raise verdict.to_error()
                advance(Stage.VALIDATED, size=verdict.size_bytes, compute_units=units)
            except ComposeError as exc:
                return self._reject(exc, stages[-1], started)

            stages.append(Stage.COMPOSED)
            envelope_out = compiled.envelope()
            elapsed = time.perf_counter() - started
            if self.metrics is not None:
                self.metrics.record_composed(
                    size_bytes=envelope_out.size,
                    lookup_accounts=len(compiled.loaded_writable) + len(compiled.loaded_readonly),
                    seconds=elapsed,
                )
            logger.info(
                "composed",
                extra={
                    "size": envelope_out.size,
                    "signers": len(envelope_out.required_signers),
                    "compute_units": units,
                },
            )
            return Composed(
                envelope=envelope_out,
                compiled=compiled,
                compute_units=units,
                stages=tuple(stages),
            )

    def _reject(self, exc: ComposeError, stage: Stage, started: float) -> Rejected:
        if self.metrics is not None:
            self.metrics.record_rejected(reason=exc.reason, seconds=time.perf_counter() - started)
        logger.warning("rejected", extra={"reason": exc.reason, "after": stage.value, "detail": str(exc)})
        return Rejected(error=exc, stage=stage)

    def compose_or_raise(self, *args, **kwargs) -> Composed:
        """Same as `compose` but raises the rejection error."""
        outcome = self.compose(*args, **kwargs)
        if isinstance(outcome, Rejected):
            raise outcome.error
        return outcome


def compose(
    envelope: EnvelopeArg,
    extra_instructions: Iterable[Instruction] = (),
    available_tables: Optional[TablesArg] = None,
    **kwargs,
) -> Outcome:
    """Compose with a default-configured `Composer`."""
    return Composer().compose(envelope, extra_instructions, available_tables, **kwargs)


__all__ = [
    "Stage",
    "Composed",
    "Rejected",
    "Outcome",
    "Composer",
    "compose",
    "required_tables",
    "prefetch_tables",
    "aprefetch_tables",
]

"""
txcompose.budget
================

Admission checks against the runtime's fixed ceilings:

  • serialized size (message + signature slots)  <= limits.max_tx_bytes
  • declared compute units                        <= limits.max_compute_units
  • distinct accounts locked by the transaction   <= limits.max_account_locks

Checks are independent and never simulate execution. A violation is reported,
not repaired: the caller removes or restructures instructions and composes
again.

Compute-unit declaration
------------------------
When the caller does not state a compute budget, it is read from the message
the same way the runtime does: a Compute Budget `SetComputeUnitLimit`
instruction wins, otherwise every non-compute-budget instruction is granted
DEFAULT_INSTRUCTION_COMPUTE_UNITS, capped at MAX_COMPUTE_UNITS.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Optional, Union

from .config import (DEFAULT_INSTRUCTION_COMPUTE_UNITS, MAX_COMPUTE_UNITS,
                     Limits)
from .decompiler import parse_message
from .errors import (AccountLimitExceeded, BudgetError, ComputeExceeded,
                     SizeExceeded)
from .types import Address, Instruction, Message
from .wire import framed_size

COMPUTE_BUDGET_PROGRAM_ID = Address("ComputeBudget111111111111111111111111111111")

# Compute Budget instruction discriminators.
_SET_COMPUTE_UNIT_LIMIT = 2
_SET_COMPUTE_UNIT_PRICE = 3

SIZE = "size"
COMPUTE = "compute"
ACCOUNTS = "accounts"


@dataclass(frozen=True)
class Ok:
    size_bytes: int
    compute_units: int
    accounts: int

    ok = True


@dataclass(frozen=True)
class Violation:
    kind: str
    limit: int
    actual: int

    ok = False

    def to_error(self) -> BudgetError:
        if self.kind == SIZE:
            return SizeExceeded(limit=self.limit, actual=self.actual)
        if self.kind == COMPUTE:
            return ComputeExceeded(limit=self.limit, actual=self.actual)
        return AccountLimitExceeded(limit=self.limit, actual=self.actual)


Verdict = Union[Ok, Violation]


# -----------------------------
# Measurements
# -----------------------------


def transaction_size(compiled: bytes) -> int:
    """Serialized transaction size for a compiled message, signatures included."""
    header_offset = 1 if compiled and compiled[0] & 0x80 else 0
    num_signers = compiled[header_offset] if len(compiled) > header_offset else 0
    return framed_size(len(compiled), num_signers)


def declared_compute_units(message: Message) -> int:
    """Compute units the runtime would grant `message`."""
    other = 0
    for ix in message.instructions:
        program = message.accounts[ix.program_index].address
        if program != COMPUTE_BUDGET_PROGRAM_ID:
            other += 1
            continue
        if len(ix.data) >= 5 and ix.data[0] == _SET_COMPUTE_UNIT_LIMIT:
            return struct.unpack_from("<I", ix.data, 1)[0]
    return min(other * DEFAULT_INSTRUCTION_COMPUTE_UNITS, MAX_COMPUTE_UNITS)


# -----------------------------
# Validation
# -----------------------------


def violations(
    compiled: bytes, declared_compute_units: int, *, limits: Optional[Limits] = None
) -> List[Violation]:
    """Every ceiling the compiled message breaks, in check order."""
    lim = limits or Limits()
    raw = parse_message(compiled)
    out: List[Violation] = []

    size = framed_size(len(compiled), raw.header.num_required_signatures)
    if size > lim.max_tx_bytes:
        out.append(Violation(SIZE, lim.max_tx_bytes, size))
    if declared_compute_units > lim.max_compute_units:
        out.append(Violation(COMPUTE, lim.max_compute_units, declared_compute_units))
    locks = len(raw.static_keys) + raw.loaded_count
    if locks > lim.max_account_locks:
        out.append(Violation(ACCOUNTS, lim.max_account_locks, locks))
    return out


def validate(
    compiled: bytes, declared_compute_units: int, *, limits: Optional[Limits] = None
) -> Verdict:
    """Return Ok, or the first Violation found."""
    found = violations(compiled, declared_compute_units, limits=limits)
    if found:
        return found[0]
    raw = parse_message(compiled)
    return Ok(
        size_bytes=transaction_size(compiled),
        compute_units=declared_compute_units,
        accounts=len(raw.static_keys) + raw.loaded_count,
    )


def enforce(
    compiled: bytes, declared_compute_units: int, *, limits: Optional[Limits] = None
) -> Ok:
    """Like `validate` but raises the violation as a BudgetError."""
    verdict = validate(compiled, declared_compute_units, limits=limits)
    if isinstance(verdict, Violation):
        raise verdict.to_error()
    return verdict


# -----------------------------
# Compute Budget instruction builders
# -----------------------------


def set_compute_unit_limit(units: int) -> Instruction:
    if not 0 <= units <= 0xFFFFFFFF:
        raise ValueError("compute unit limit must fit in u32")
    return Instruction(
        COMPUTE_BUDGET_PROGRAM_ID, (), struct.pack("<BI", _SET_COMPUTE_UNIT_LIMIT, units)
    )


def set_compute_unit_price(micro_lamports: int) -> Instruction:
    if not 0 <= micro_lamports <= 0xFFFFFFFFFFFFFFFF:
        raise ValueError("compute unit price must fit in u64")
    return Instruction(
        COMPUTE_BUDGET_PROGRAM_ID, (), struct.pack("<BQ", _SET_COMPUTE_UNIT_PRICE, micro_lamports)
    )


__all__ = [
    "COMPUTE_BUDGET_PROGRAM_ID",
    "Ok",
    "Violation",
    "Verdict",
    "transaction_size",
    "declared_compute_units",
    "violations",
    "validate",
    "enforce",
    "set_compute_unit_limit",
    "set_compute_unit_price",
]

"""
txcompose.errors
----------------

Typed exceptions for message decompilation, address resolution, compilation
and budget admission. These are designed to be:
- Richly structured (carry machine-parsable context via `.to_dict()`).
- Stable for callers and dashboards (integer `code`, snake_case `reason`).
- Easy to log (clean __str__ plus a compact `reason`).

Hierarchy:

    ComposeError (base)
    ├── MalformedEnvelope          (fatal, input cannot be parsed)
    ├── ResolutionError
    │   ├── UnknownTable           (retryable after fetching the table)
    │   └── IndexOutOfRange        (retryable after refreshing the table)
    ├── BudgetError
    │   ├── SizeExceeded
    │   ├── ComputeExceeded
    │   └── AccountLimitExceeded
    └── DuplicateAddressConflict   (internal consistency failure)

Notes
-----
* Keep error *reasons* short and stable for metrics labels.
* Context holds addresses as base58 strings; never raw message bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

__all__ = [
    "ComposeErrorCode",
    "ComposeError",
    "MalformedEnvelope",
    "ResolutionError",
    "UnknownTable",
    "IndexOutOfRange",
    "BudgetError",
    "SizeExceeded",
    "ComputeExceeded",
    "AccountLimitExceeded",
    "DuplicateAddressConflict",
    "err_payload",
]


class ComposeErrorCode:
    """
    Stable numeric error codes.

    Range 2000–2099 is reserved for txcompose.
    """

    MALFORMED_ENVELOPE = 2000
    UNKNOWN_TABLE = 2010
    INDEX_OUT_OF_RANGE = 2011
    SIZE_EXCEEDED = 2020
    COMPUTE_EXCEEDED = 2021
    ACCOUNT_LIMIT_EXCEEDED = 2022
    DUPLICATE_ADDRESS = 2090


@dataclass(eq=False)
class ComposeError(Exception):
    """
    Base class for composition errors.

    Attributes
    ----------
    code : int
        Stable integer code (see ComposeErrorCode).
    reason : str
        Short, machine-friendly reason (snake_case).
    message : str
        Human-readable message.
    context : Dict[str, Any]
        Structured details safe for logs and telemetry.
    retryable : bool
        Whether the caller may succeed after refreshing its inputs
        (e.g. fetching a missing lookup table). The engine never retries.
    """

    code: int
    reason: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        ctx = ""
        if self.context:
            parts = []
            for k, v in self.context.items():
                if v is None:
                    continue
                s = str(v)
                if len(s) > 64:
                    s = s[:61] + "..."
                parts.append(f"{k}={s}")
            if parts:
                ctx = " [" + ", ".join(parts) + "]"
        return f"{self.reason}: {self.message}{ctx}"

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable error object."""
        return {
            "code": self.code,
            "reason": self.reason,
            "message": self.message,
            "context": dict(self.context) if self.context else {},
            "retryable": self.retryable,
        }


class MalformedEnvelope(ComposeError):
    """
    The input is unparseable or self-inconsistent: truncated sections, an
    unknown version prefix, trailing bytes, an instruction index beyond the
    combined account list, or a duplicated account.
    """

    def __init__(self, message: str, *, offset: Optional[int] = None, **context: Any) -> None:
        ctx: Dict[str, Any] = {"offset": offset}
        ctx.update(context)
        super().__init__(
            code=ComposeErrorCode.MALFORMED_ENVELOPE,
            reason="malformed_envelope",
            message=message,
            context=ctx,
        )


class ResolutionError(ComposeError):
    """Parent for lookup-table resolution failures."""


class UnknownTable(ResolutionError):
    """An `Indirect` reference names a table that was not supplied."""

    def __init__(self, *, table: str) -> None:
        super().__init__(
            code=ComposeErrorCode.UNKNOWN_TABLE,
            reason="unknown_table",
            message=f"lookup table {table} is not available",
            context={"table": table},
            retryable=True,
        )


class IndexOutOfRange(ResolutionError):
    """An `Indirect` reference points past the end of its table snapshot."""

    def __init__(self, *, table: str, index: int, size: int) -> None:
        super().__init__(
            code=ComposeErrorCode.INDEX_OUT_OF_RANGE,
            reason="index_out_of_range",
            message=f"index {index} out of range for table with {size} entries",
            context={"table": table, "index": index, "size": size},
            retryable=True,
        )


class BudgetError(ComposeError):
    """
    Parent for hard-ceiling violations. The caller must remove or restructure
    instructions and compose again.
    """

    kind: str = "budget"

    def __init__(self, *, code: int, reason: str, message: str, limit: int, actual: int) -> None:
        super().__init__(
            code=code,
            reason=reason,
            message=message,
            context={"limit": limit, "actual": actual},
        )

    @property
    def limit(self) -> int:
        return int(self.context["limit"])

    @property
    def actual(self) -> int:
        return int(self.context["actual"])


class SizeExceeded(BudgetError):
    kind = "size"

    def __init__(self, *, limit: int, actual: int) -> None:
        super().__init__(
            code=ComposeErrorCode.SIZE_EXCEEDED,
            reason="size_exceeded",
            message=f"transaction too large: {actual} bytes > limit {limit} bytes",
            limit=limit,
            actual=actual,
        )


class ComputeExceeded(BudgetError):
    kind = "compute"

    def __init__(self, *, limit: int, actual: int) -> None:
        super().__init__(
            code=ComposeErrorCode.COMPUTE_EXCEEDED,
            reason="compute_exceeded",
            message=f"compute units requested {actual} > limit {limit}",
            limit=limit,
            actual=actual,
        )


class AccountLimitExceeded(BudgetError):
    kind = "accounts"

    def __init__(self, *, limit: int, actual: int) -> None:
        super().__init__(
            code=ComposeErrorCode.ACCOUNT_LIMIT_EXCEEDED,
            reason="account_limit_exceeded",
            message=f"transaction references {actual} accounts > limit {limit}",
            limit=limit,
            actual=actual,
        )


class DuplicateAddressConflict(ComposeError):
    """
    The same address would be emitted twice in one compiled account space.
    Unreachable when the intermediate form is well built; treated as fatal.
    """

    def __init__(self, *, address: str, where: str) -> None:
        super().__init__(
            code=ComposeErrorCode.DUPLICATE_ADDRESS,
            reason="duplicate_address",
            message=f"address {address} appears twice in {where}",
            context={"address": address, "where": where},
        )


# ---- Utilities --------------------------------------------------------------


def err_payload(exc: ComposeError) -> Dict[str, Any]:
    """
    Return a compact JSON-serializable payload for an error.
    """
    return exc.to_dict()

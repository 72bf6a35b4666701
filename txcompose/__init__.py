"""
txcompose: compose extra instructions into an already-compiled, versioned
transaction message without breaking its address-table references.

Lightweight public surface:
- __version__ / get_version()
- compose, Composer, Composed, Rejected (orchestrator)
- Address, Direct, Indirect, Instruction, LookupTable (types)

Everything else is reachable through its submodule. Exports are resolved
lazily on first access so `import txcompose` stays cheap for the CLI.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .version import __version__

__all__ = [
    "__version__",
    "get_version",
    "compose",
    "Composer",
    "Composed",
    "Rejected",
    "Stage",
    "Address",
    "Direct",
    "Indirect",
    "Instruction",
    "LookupTable",
    "ComposedEnvelope",
    "ComposeError",
]


def get_version() -> str:
    """Return the txcompose package version string."""
    return __version__


# --- Lazy exports ------------------------------------------------------------
_lazy_exports = {
    "compose": "txcompose.orchestrator",
    "Composer": "txcompose.orchestrator",
    "Composed": "txcompose.orchestrator",
    "Rejected": "txcompose.orchestrator",
    "Stage": "txcompose.orchestrator",
    "Address": "txcompose.types",
    "Direct": "txcompose.types",
    "Indirect": "txcompose.types",
    "Instruction": "txcompose.types",
    "LookupTable": "txcompose.types",
    "ComposedEnvelope": "txcompose.types",
    "ComposeError": "txcompose.errors",
}


def __getattr__(name: str) -> Any:  # PEP 562
    mod_path = _lazy_exports.get(name)
    if mod_path is None:
        raise AttributeError(f"module 'txcompose' has no attribute {name!r}")
    import importlib

    value = getattr(importlib.import_module(mod_path), name)
    globals()[name] = value  # cache after first access
    return value


if TYPE_CHECKING:
    from .errors import ComposeError  # noqa: F401
    from .orchestrator import (Composed, Composer, Rejected,  # noqa: F401
                               Stage, compose)
    from .types import (Address, ComposedEnvelope, Direct,  # noqa: F401
                        Indirect, Instruction, LookupTable)

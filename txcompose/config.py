"""
txcompose.config
----------------

Configuration for the composition engine:

- Limits: the hard ceilings a composed transaction must respect. Defaults are
  the target runtime's own ceilings; they may be lowered (e.g. to leave room
  for a later instruction) but never raised.
- Logging: level and output format for `txcompose.logging.configure`.

The loader supports environment variables and optional YAML/JSON files.

ENV overrides (all optional; examples shown as defaults):
  TXCOMPOSE_MAX_TX_BYTES=1232
  TXCOMPOSE_MAX_COMPUTE_UNITS=1400000
  TXCOMPOSE_MAX_ACCOUNT_LOCKS=64
  TXCOMPOSE_LOG_LEVEL=INFO
  TXCOMPOSE_LOG_FORMAT=text            # text | json
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

# --------- Runtime ceilings --------------------------------------------------

# Maximum serialized transaction size (IPv6 MTU minus headers).
MAX_TX_BYTES = 1232
MAX_COMPUTE_UNITS = 1_400_000
MAX_ACCOUNT_LOCKS = 64
# Compute units the runtime grants each instruction when no limit is requested.
DEFAULT_INSTRUCTION_COMPUTE_UNITS = 200_000

_LOG_FORMATS = {"text", "json"}


# --------- Helpers -----------------------------------------------------------


def _get_env_int(name: str, default: int) -> int:
    val = os.environ.get(name)
    if val is None or val.strip() == "":
        return default
    try:
        return int(val, 0)
    except ValueError as e:
        raise ValueError(f"{name} must be int, got {val!r}") from e


def _get_env_str(name: str, default: str) -> str:
    val = os.environ.get(name)
    return default if val is None or val.strip() == "" else val.strip()


# --------- Dataclasses -------------------------------------------------------


@dataclass(frozen=True)
class Limits:
    max_tx_bytes: int = MAX_TX_BYTES
    max_compute_units: int = MAX_COMPUTE_UNITS
    max_account_locks: int = MAX_ACCOUNT_LOCKS


@dataclass(frozen=True)
class ComposerConfig:
    limits: Limits = field(default_factory=Limits)
    log_level: str = "INFO"
    log_format: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "limits": asdict(self.limits),
            "log_level": self.log_level,
            "log_format": self.log_format,
        }

    # Sanity checks; raise ValueError on misconfiguration.
    def validate(self) -> None:
        lim = self.limits
        if not (0 < lim.max_tx_bytes <= MAX_TX_BYTES):
            raise ValueError(f"limits.max_tx_bytes must be in 1..{MAX_TX_BYTES}")
        if not (0 < lim.max_compute_units <= MAX_COMPUTE_UNITS):
            raise ValueError(f"limits.max_compute_units must be in 1..{MAX_COMPUTE_UNITS}")
        if not (0 < lim.max_account_locks <= MAX_ACCOUNT_LOCKS):
            raise ValueError(f"limits.max_account_locks must be in 1..{MAX_ACCOUNT_LOCKS}")
        if self.log_level.upper() not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"log_level not recognised: {self.log_level!r}")
        if self.log_format.lower() not in _LOG_FORMATS:
            raise ValueError(f"log_format must be one of {sorted(_LOG_FORMATS)}")


# --------- Loading -----------------------------------------------------------


def _from_env(base: Optional[ComposerConfig] = None) -> ComposerConfig:
    b = base or ComposerConfig()
    limits = Limits(
        max_tx_bytes=_get_env_int("TXCOMPOSE_MAX_TX_BYTES", b.limits.max_tx_bytes),
        max_compute_units=_get_env_int(
            "TXCOMPOSE_MAX_COMPUTE_UNITS", b.limits.max_compute_units
        ),
        max_account_locks=_get_env_int(
            "TXCOMPOSE_MAX_ACCOUNT_LOCKS", b.limits.max_account_locks
        ),
    )
    cfg = ComposerConfig(
        limits=limits,
        log_level=_get_env_str("TXCOMPOSE_LOG_LEVEL", b.log_level),
        log_format=_get_env_str("TXCOMPOSE_LOG_FORMAT", b.log_format),
    )
    cfg.validate()
    return cfg


def _from_mapping(m: Dict[str, Any]) -> ComposerConfig:
    limits = Limits(**(m.get("limits") or {}))
    cfg = ComposerConfig(
        limits=limits,
        log_level=str(m.get("log_level", "INFO")),
        log_format=str(m.get("log_format", "text")),
    )
    cfg.validate()
    return cfg


def load_config(path: Optional[Union[str, Path]] = None) -> ComposerConfig:
    """
    Load configuration from (in order of precedence):
      1) Environment variables (see header).
      2) File at `path` (YAML/JSON), if provided and exists.
      3) Built-in defaults.
    """
    base = ComposerConfig()
    if path:
        p = Path(path)
        if p.exists():
            text = p.read_text(encoding="utf-8")
            data: Dict[str, Any]
            if p.suffix.lower() in {".yml", ".yaml"}:
                data = yaml.safe_load(text) or {}
            else:
                data = json.loads(text)
            base = _from_mapping(data)
    return _from_env(base)


# --------- CLI ---------------------------------------------------------------


def _main(argv: list[str]) -> int:
    import argparse

    ap = argparse.ArgumentParser(description="Print effective txcompose config")
    ap.add_argument(
        "--config", type=str, help="Path to YAML/JSON config file", default=None
    )
    args = ap.parse_args(argv)
    cfg = load_config(args.config)
    print(json.dumps(cfg.to_dict(), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":  # pragma: no cover
    import sys

    raise SystemExit(_main(sys.argv[1:]))

"""
txcompose.version
-----------------

Single source of truth for the txcompose package version.

- BASE_VERSION: the semantic version (manually bumped).
- __version__: BASE_VERSION, or TXCOMPOSE_VERSION_OVERRIDE when set (used as-is,
  e.g. by release tooling stamping a local build tag).

    python -m txcompose.version         # prints version string
    python -m txcompose.version --json  # prints JSON with details
"""

from __future__ import annotations

import json
import os
import sys

# Bump this when you cut a release.
BASE_VERSION = "0.1.0"


def build_version() -> str:
    override = os.environ.get("TXCOMPOSE_VERSION_OVERRIDE")
    if override:
        return override
    return BASE_VERSION


def version_tuple() -> tuple[int, int, int]:
    major, minor, patch = BASE_VERSION.split(".")
    return int(major), int(minor), int(patch)


def describe() -> dict:
    return {
        "base_version": BASE_VERSION,
        "version": build_version(),
        "source": "env" if os.environ.get("TXCOMPOSE_VERSION_OVERRIDE") else "base",
    }


__version__ = build_version()


def _main(argv: list[str]) -> int:
    if "--json" in argv:
        print(json.dumps(describe(), indent=2, sort_keys=True))
    else:
        print(__version__)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(_main(sys.argv[1:]))

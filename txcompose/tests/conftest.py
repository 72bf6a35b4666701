"""
Shared fixtures for txcompose tests and the Hypothesis profiles used by the
property tests.

Profiles:
- dev (default locally): 100 examples, random
- ci  (CI env var set):  200 examples, derandomized
Override with HYPOTHESIS_PROFILE=dev|ci.
"""
from __future__ import annotations

import os

import pytest
from hypothesis import HealthCheck, settings

from txcompose.tests import (ACC_X, ACC_Y, BLOCKHASH, PROGRAM_A, TABLE_A,
                             encode_message)
from txcompose.types import LookupTable

settings.register_profile(
    "dev",
    settings(max_examples=100, deadline=None, suppress_health_check=(HealthCheck.too_slow,)),
)
settings.register_profile(
    "ci",
    settings(
        max_examples=200,
        deadline=None,
        suppress_health_check=(HealthCheck.too_slow,),
        derandomize=True,
    ),
)
settings.load_profile(
    os.getenv("HYPOTHESIS_PROFILE") or ("ci" if (os.getenv("CI") or "").lower() not in ("", "0", "false") else "dev")
)



@pytest.fixture
def table_a() -> LookupTable:
    """Table holding ACC_X at 0 and ACC_Y at 1."""
    return LookupTable(TABLE_A, (ACC_X, ACC_Y))


@pytest.fixture
def routed_message() -> bytes:
    """
    Unsigned v0 message with one instruction of PROGRAM_A over
    [ACC_X (writable, via table), ACC_Y (readonly, via table)].
    """
    return encode_message(
        header=(0, 0, 1),
        static_keys=[PROGRAM_A],
        instructions=[(0, [1, 2], b"\x01route")],
        lookups=[(TABLE_A, [0], [1])],
        blockhash=BLOCKHASH,
    )

"""
txcompose.cli
=============

Namespace for command-line helpers. Each tool is run directly:

    python -m txcompose.cli.inspect --message <b64|hex|@file> ...
"""

from __future__ import annotations

from txcompose.version import __version__

__all__ = ["__version__"]

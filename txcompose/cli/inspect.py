#!/usr/bin/env python3
"""
txcompose message inspector

Usage examples:
  # Decompile a base64 message (what most RPC nodes and routers return)
  python -m txcompose.cli.inspect --message AQABA...

  # A full transaction from a file, resolving lookups from a tables snapshot
  python -m txcompose.cli.inspect --message @swap.b64 --transaction --tables tables.json

  # Splice extra instructions in and print the composed envelope
  python -m txcompose.cli.inspect --message @swap.b64 --transaction \\
      --tables tables.json --compose extra.json --json

tables.json accepts either shape:
  {"<table>": ["<addr>", ...], ...}
  [{"address": "<table>", "entries": ["<addr>", ...]}, {"address": "<table>", "data": "<base64 account data>"}]

extra.json is a list of instructions (or {"instructions": [...], "compute_units": N}):
  {"program_id": "<addr>",
   "accounts": [{"address": "<addr>", "writable": true, "signer": true},
                {"table": "<table>", "index": 3, "writable": false}],
   "data": "<base64>"}            # or "data_hex": "0x..."

Addresses are base58. Exit status is 0 on success, 1 when the message is
rejected or cannot be decoded, 2 on unreadable input files.
"""

from __future__ import annotations

import argparse
import base64
import json
import sys
import typing as t

from txcompose.cli import __version__ as TXCOMPOSE_VER
from txcompose.config import load_config
from txcompose.decompiler import decompile, parse_message
from txcompose.errors import ComposeError
from txcompose.orchestrator import Composed, Composer
from txcompose.types import (AccountRef, Address, Direct, Indirect,
                             Instruction, LookupTable, Message)
from txcompose.wire import coerce_bytes, unwrap_transaction

Json = t.Union[dict, list, str, int, float, bool, None]


# -----------------------------
# Input parsing
# -----------------------------


def _read_text(arg: str) -> str:
    """`@path` reads a file, `-` reads stdin, anything else is literal."""
    if arg == "-":
        return sys.stdin.read().strip()
    if arg.startswith("@"):
        with open(arg[1:], "r", encoding="utf-8") as f:
            return f.read().strip()
    return arg.strip()


def _read_json_file(path: str) -> Json:
    if path == "-":
        return json.loads(sys.stdin.read())
    with open(path, "r", encoding="utf-8") as f:
        return json.loads(f.read())


def parse_tables(blob: Json) -> list[LookupTable]:
    if isinstance(blob, dict):
        return [
            LookupTable(Address(addr), tuple(Address(e) for e in entries))
            for addr, entries in blob.items()
        ]
    if isinstance(blob, list):
        out = []
        for item in blob:
            if not isinstance(item, dict) or "address" not in item:
                raise ValueError("table entries must be objects with an 'address' key")
            if "data" in item:
                out.append(
                    LookupTable.from_account_data(item["address"], base64.b64decode(item["data"]))
                )
            else:
                out.append(
                    LookupTable(
                        Address(item["address"]),
                        tuple(Address(e) for e in item.get("entries", ())),
                    )
                )
        return out
    raise ValueError("tables JSON must be an object or a list")


def _parse_ref(obj: dict) -> AccountRef:
    if "table" in obj:
        return Indirect(Address(obj["table"]), int(obj["index"]), bool(obj.get("writable", False)))
    return Direct(
        Address(obj["address"]),
        writable=bool(obj.get("writable", False)),
        signer=bool(obj.get("signer", False)),
    )


def _parse_data(obj: dict) -> bytes:
    if "data_hex" in obj:
        h = str(obj["data_hex"])
        return bytes.fromhex(h[2:] if h.startswith(("0x", "0X")) else h)
    return base64.b64decode(obj.get("data", ""))


def parse_instructions(blob: Json) -> tuple[list[Instruction], t.Optional[int]]:
    compute_units = None
    if isinstance(blob, dict):
        compute_units = blob.get("compute_units")
        blob = blob.get("instructions", [])
    if not isinstance(blob, list):
        raise ValueError("instructions JSON must be a list or {'instructions': [...]}")
    out = [
        Instruction(
            Address(ix["program_id"]),
            tuple(_parse_ref(a) for a in ix.get("accounts", ())),
            _parse_data(ix),
        )
        for ix in blob
    ]
    return out, (int(compute_units) if compute_units is not None else None)


# -----------------------------
# Rendering
# -----------------------------


def _flags(writable: bool, signer: bool) -> str:
    return ("w" if writable else "-") + ("s" if signer else "-")


def message_summary(message: Message, *, version: t.Optional[int], size: int) -> dict:
    header = message.header
    return {
        "version": "legacy" if version is None else version,
        "size_bytes": size,
        "payer": str(message.payer) if message.payer is not None else None,
        "recent_blockhash": str(Address(message.recent_blockhash)),
        "header": {
            "num_required_signatures": header.num_required_signatures,
            "num_readonly_signed_accounts": header.num_readonly_signed_accounts,
            "num_readonly_unsigned_accounts": header.num_readonly_unsigned_accounts,
        },
        "accounts": [
            {"address": str(a.address), "writable": a.writable, "signer": a.signer}
            for a in message.accounts
        ],
        "instructions": [
            {
                "program_id": str(message.accounts[ix.program_index].address),
                "accounts": [str(message.accounts[i].address) for i in ix.account_indexes],
                "data": base64.b64encode(ix.data).decode("ascii"),
            }
            for ix in message.instructions
        ],
        "address_table_lookups": [
            {
                "table": str(lk.table),
                "writable_indexes": list(lk.writable_indexes),
                "readonly_indexes": list(lk.readonly_indexes),
            }
            for lk in message.address_table_lookups
        ],
    }


def print_header(title: str) -> None:
    print(title)
    print("-" * len(title))


def print_summary(summary: dict) -> None:
    print_header(f"txcompose inspect (v{TXCOMPOSE_VER})")
    h = summary["header"]
    print(f"Version           : {summary['version']}")
    print(f"Message size      : {summary['size_bytes']}B")
    print(f"Payer             : {summary['payer'] or '-'}")
    print(f"Recent blockhash  : {summary['recent_blockhash']}")
    print(
        f"Header            : signers={h['num_required_signatures']} "
        f"ro_signed={h['num_readonly_signed_accounts']} "
        f"ro_unsigned={h['num_readonly_unsigned_accounts']}"
    )
    print()
    print_header(f"Accounts ({len(summary['accounts'])})")
    for i, a in enumerate(summary["accounts"]):
        print(f"{i:>4}  {_flags(a['writable'], a['signer'])}  {a['address']}")
    print()
    print_header(f"Instructions ({len(summary['instructions'])})")
    for n, ix in enumerate(summary["instructions"]):
        print(f"#{n} {ix['program_id']}  data={ix['data'] or '-'}")
        for addr in ix["accounts"]:
            print(f"      {addr}")
    if summary["address_table_lookups"]:
        print()
        print_header(f"Lookups ({len(summary['address_table_lookups'])})")
        for lk in summary["address_table_lookups"]:
            print(f"{lk['table']}  w={lk['writable_indexes']} r={lk['readonly_indexes']}")


def _emit_error(exc: ComposeError, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps({"ok": False, "error": exc.to_dict()}, indent=2, sort_keys=True))
    else:
        print(f"error: {exc}", file=sys.stderr)


# -----------------------------
# Main
# -----------------------------


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Decompile and compose versioned transaction messages")
    p.add_argument("--message", help="Message or transaction: base64, 0x-hex, @file or '-'")
    p.add_argument("--transaction", action="store_true", help="Input is a full transaction (signatures + message)")
    p.add_argument("--tables", help="Lookup tables JSON file (see module help)")
    p.add_argument("--compose", metavar="EXTRA_JSON", help="Instructions JSON to splice in")
    p.add_argument("--config", help="Path to YAML/JSON composer config")
    p.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    p.add_argument("--version", action="store_true", help="Print tool version and exit")

    args = p.parse_args(argv)

    if args.version:
        print(f"txcompose.inspect {TXCOMPOSE_VER}")
        return 0
    if not args.message:
        p.error("--message is required")

    try:
        tables = parse_tables(_read_json_file(args.tables)) if args.tables else []
        raw = coerce_bytes(_read_text(args.message))
        if args.transaction:
            _, raw = unwrap_transaction(raw)

        if args.compose:
            extra, units = parse_instructions(_read_json_file(args.compose))
            composer = Composer(load_config(args.config))
            outcome = composer.compose(raw, extra, tables, compute_units=units)
            if not isinstance(outcome, Composed):
                _emit_error(outcome.error, as_json=args.json)
                return 1
            env = outcome.envelope
            if args.json:
                out = {
                    "ok": True,
                    "message": base64.b64encode(env.message).decode("ascii"),
                    "transaction": base64.b64encode(env.to_unsigned_transaction()).decode("ascii"),
                    "size_bytes": env.size,
                    "compute_units": outcome.compute_units,
                    "required_signers": [str(a) for a in env.required_signers],
                }
                print(json.dumps(out, indent=2, sort_keys=True))
            else:
                print(base64.b64encode(env.to_unsigned_transaction()).decode("ascii"))
                print(
                    f"size={env.size}B compute_units={outcome.compute_units} "
                    f"signers={','.join(str(a) for a in env.required_signers)}",
                    file=sys.stderr,
                )
            return 0

        version = parse_message(raw).version
        message = decompile(raw, {tbl.address: tbl for tbl in tables})
    except ComposeError as exc:
        _emit_error(exc, as_json=args.json)
        return 1
    except (OSError, ValueError, KeyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    summary = message_summary(message, version=version, size=len(raw))
    if args.json:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print_summary(summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""
txcompose.splicer
=================

Caller-facing mutation API over the intermediate `Message`.

Semantics
---------
* Each account an instruction touches (its program id and every AccountRef) is
  looked up by address in `Message.accounts`:
    - new addresses are appended with the flags the instruction declares;
    - existing entries are *widened*, never narrowed:
        writable = writable_old OR writable_new
        signer   = signer_old   OR signer_new
* `append` places the instruction last; `insert` places it at an explicit
  position. Prior instructions keep their relative order and are never
  removed. Account positions are append-only, so existing compiled
  instructions stay valid without re-indexing.
* A message without a fee payer adopts the first signer the instruction
  introduces; the payer is always writable.

Every function returns a new Message; the input is left untouched.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional

from .resolver import resolve
from .types import (AccountEntry, Address, CompiledInstruction, Instruction,
                    LookupTable, Message)

logger = logging.getLogger(__name__)


class _AccountBuilder:
    """Copy-on-write view of an account list with widening updates."""

    def __init__(self, accounts: Iterable[AccountEntry]) -> None:
        self.entries: List[AccountEntry] = list(accounts)
        self.positions: Dict[bytes, int] = {e.address: i for i, e in enumerate(self.entries)}

    def touch(self, address: Address, writable: bool, signer: bool) -> int:
        pos = self.positions.get(address)
        if pos is None:
            pos = len(self.entries)
            self.entries.append(AccountEntry(address, writable, signer))
            self.positions[address] = pos
        else:
            self.entries[pos] = self.entries[pos].widened(writable, signer)
        return pos


def _splice(
    message: Message,
    position: int,
    instruction: Instruction,
    tables: Optional[Mapping[bytes, LookupTable]],
) -> Message:
    tables = tables or {}
    builder = _AccountBuilder(message.accounts)

    program_index = builder.touch(instruction.program_id, False, False)
    account_indexes = []
    first_signer: Optional[Address] = None
    for ref in instruction.accounts:
        address = resolve(ref, tables)
        account_indexes.append(builder.touch(address, ref.writable, ref.signer))
        if ref.signer and first_signer is None:
            first_signer = address

    payer = message.payer
    if payer is None and first_signer is not None:
        payer = first_signer
        builder.touch(payer, True, True)

    compiled = CompiledInstruction(program_index, tuple(account_indexes), instruction.data)
    instructions = list(message.instructions)
    instructions.insert(position, compiled)

    logger.debug(
        "spliced instruction",
        extra={
            "position": position,
            "program": str(instruction.program_id),
            "new_accounts": len(builder.entries) - len(message.accounts),
        },
    )
    return replace(
        message,
        accounts=tuple(builder.entries),
        instructions=tuple(instructions),
        payer=payer,
    )


def append(
    message: Message,
    instruction: Instruction,
    tables: Optional[Mapping[bytes, LookupTable]] = None,
) -> Message:
    """Return `message` with `instruction` as its last instruction."""
    return _splice(message, len(message.instructions), instruction, tables)


def insert(
    message: Message,
    index: int,
    instruction: Instruction,
    tables: Optional[Mapping[bytes, LookupTable]] = None,
) -> Message:
    """
    Return `message` with `instruction` at position `index` (0..len inclusive).
    Flag widening is identical to `append`.
    """
    if not 0 <= index <= len(message.instructions):
        raise IndexError(
            f"insert position {index} out of range 0..{len(message.instructions)}"
        )
    return _splice(message, index, instruction, tables)


def extend(
    message: Message,
    instructions: Iterable[Instruction],
    tables: Optional[Mapping[bytes, LookupTable]] = None,
) -> Message:
    """Append several instructions in order."""
    for ix in instructions:
        message = append(message, ix, tables)
    return message


__all__ = ["append", "insert", "extend"]

#!/usr/bin/env python3
"""Shared DCPU-16 opcode and operand tables.

Keeping the canonical mapping in a single module prevents drift between the
assembler and the reference VM. Tests assert that both consumers use these
tables unchanged.
"""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

# Ordered list so docs and tooling can iterate in a stable order.
BASIC_OPCODE_LIST: Tuple[Tuple[str, int], ...] = (
    ("SET", 0x01),
    ("ADD", 0x02),
    ("SUB", 0x03),
    ("MUL", 0x04),
    ("MLI", 0x05),
    ("DIV", 0x06),
    ("DVI", 0x07),
    ("MOD", 0x08),
    ("MDI", 0x09),
    ("AND", 0x0A),
    ("BOR", 0x0B),
    ("XOR", 0x0C),
    ("SHR", 0x0D),
    ("ASR", 0x0E),
    ("SHL", 0x0F),
    ("IFB", 0x10),
    ("IFC", 0x11),
    ("IFE", 0x12),
    ("IFN", 0x13),
    ("IFG", 0x14),
    ("IFA", 0x15),
    ("IFL", 0x16),
    ("IFU", 0x17),
    ("ADX", 0x1A),
    ("SBX", 0x1B),
    ("STI", 0x1E),
    ("STD", 0x1F),
)

SPECIAL_OPCODE_LIST: Tuple[Tuple[str, int], ...] = (
    ("JSR", 0x01),
    ("INT", 0x08),
    ("IAG", 0x09),
    ("IAS", 0x0A),
    ("RFI", 0x0B),
    ("IAQ", 0x0C),
    ("HWN", 0x10),
    ("HWQ", 0x11),
    ("HWI", 0x12),
)

BASIC_OPCODES: Dict[str, int] = {mnemonic: opcode for mnemonic, opcode in BASIC_OPCODE_LIST}
BASIC_OPCODE_NAMES: Dict[int, str] = {opcode: mnemonic for mnemonic, opcode in BASIC_OPCODE_LIST}
SPECIAL_OPCODES: Dict[str, int] = {mnemonic: opcode for mnemonic, opcode in SPECIAL_OPCODE_LIST}
SPECIAL_OPCODE_NAMES: Dict[int, str] = {opcode: mnemonic for mnemonic, opcode in SPECIAL_OPCODE_LIST}

# Conditional opcodes skip the following instruction when the test fails.
CONDITIONAL_OPCODES = frozenset(range(0x10, 0x18))

REGISTERS: Tuple[str, ...] = ("A", "B", "C", "X", "Y", "Z", "I", "J")
REGISTER_CODES: Dict[str, int] = {name: idx for idx, name in enumerate(REGISTERS)}

# Operand keywords that can never be used as label names.
RESERVED_NAMES = frozenset(REGISTERS) | {"SP", "PC", "EX", "PUSH", "POP", "PEEK", "PICK"}

# Operand value codes (6 bits for a, 5 bits for b).
VAL_REG = 0x00
VAL_REG_IND = 0x08
VAL_REG_IND_NEXT = 0x10
VAL_PUSH_POP = 0x18
VAL_PEEK = 0x19
VAL_PICK = 0x1A
VAL_SP = 0x1B
VAL_PC = 0x1C
VAL_EX = 0x1D
VAL_IND_NEXT = 0x1E
VAL_NEXT = 0x1F
VAL_SHORT_LITERAL = 0x20

SHORT_LITERAL_MIN = -1
SHORT_LITERAL_MAX = 30

WORD_MASK = 0xFFFF
MEMORY_WORDS = 0x10000

__all__ = [
    "BASIC_OPCODE_LIST",
    "SPECIAL_OPCODE_LIST",
    "BASIC_OPCODES",
    "BASIC_OPCODE_NAMES",
    "SPECIAL_OPCODES",
    "SPECIAL_OPCODE_NAMES",
    "CONDITIONAL_OPCODES",
    "REGISTERS",
    "REGISTER_CODES",
    "WORD_MASK",
    "MEMORY_WORDS",
]


def uses_next_word(value_code: int) -> bool:
    """Return True when an operand value code consumes an extra word."""

    return (
        VAL_REG_IND_NEXT <= value_code < VAL_PUSH_POP
        or value_code in (VAL_PICK, VAL_IND_NEXT, VAL_NEXT)
    )


def encode_instruction(opcode: int, b: int, a: int) -> int:
    return ((a & 0x3F) << 10) | ((b & 0x1F) << 5) | (opcode & 0x1F)


def decode_instruction(word: int) -> Tuple[int, int, int]:
    """Split an instruction word into ``(opcode, b, a)``."""

    return word & 0x1F, (word >> 5) & 0x1F, (word >> 10) & 0x3F


def opcode_values() -> Iterable[int]:
    """Return all basic opcode numeric values."""

    return BASIC_OPCODE_NAMES.keys()

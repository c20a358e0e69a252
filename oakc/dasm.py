#!/usr/bin/env python3
"""
dasm.py — DCPU-16 assembly text -> memory image

Assembles exactly the dialect the oakc backends emit: ``:label`` lines,
``;`` comments, ``DAT`` and the basic/special opcodes of DCPU-16 1.7.
Like the target toolchain, operands take no unary minus.

Usage:
  python3 -m oakc.dasm main.dasm16 -o main.bin --dump-words
"""
from __future__ import annotations

import argparse
import re
import struct
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from oakc import opcodes

OPC = opcodes.BASIC_OPCODES
SPECIAL_OPC = opcodes.SPECIAL_OPCODES

LABEL_RE = re.compile(r"[A-Za-z_.][A-Za-z0-9_.]*")
NUMBER_RE = re.compile(r"(?:0x[0-9A-Fa-f]+|0b[01]+|\d+)")
INDIRECT_RE = re.compile(r"\[\s*(.+?)\s*\]$")
PICK_RE = re.compile(r"PICK\s+(\S+)", re.IGNORECASE)

STACK_ALIASES = {
    "PUSH": "push",
    "[--SP]": "push",
    "POP": "pop",
    "[SP++]": "pop",
    "PEEK": "peek",
    "[SP]": "peek",
}

# A pending symbolic value resolved in the second pass.
Word = Union[int, str]


@dataclass
class Operand:
    code: int
    next_word: Optional[Word] = None


@dataclass
class Image:
    """Assembled program: words loaded at address 0 plus its symbol table."""

    words: List[int]
    labels: Dict[str, int] = field(default_factory=dict)

    def address_of(self, label: str) -> int:
        try:
            return self.labels[label]
        except KeyError:
            raise ValueError(f"Unknown label {label}") from None

    def to_bytes(self) -> bytes:
        return b"".join(struct.pack(">H", word) for word in self.words)


def parse_int(token: str) -> int:
    token = token.strip()
    if token.startswith("-"):
        raise ValueError(f"Unary minus is not supported: '{token}'")
    if not NUMBER_RE.fullmatch(token):
        raise ValueError(f"Bad numeric literal '{token}'")
    value = int(token, 0)
    if value > opcodes.WORD_MASK:
        raise ValueError(f"Literal out of 16-bit range: {token}")
    return value


def parse_value(token: str) -> Word:
    """Return an integer literal or a label name awaiting resolution."""

    token = token.strip()
    if token and (token[0].isdigit() or token[0] == "-"):
        return parse_int(token)
    if LABEL_RE.fullmatch(token) and token.upper() not in opcodes.RESERVED_NAMES:
        return token
    raise ValueError(f"Bad value '{token}'")


def split_args(arg_str: str) -> List[str]:
    if not arg_str:
        return []
    return [arg.strip() for arg in arg_str.split(",")]


def _parse_indirect(inner: str) -> Operand:
    parts = [part.strip() for part in inner.split("+")]
    if len(parts) == 1:
        name = parts[0].upper()
        if name in opcodes.REGISTER_CODES:
            return Operand(opcodes.VAL_REG_IND + opcodes.REGISTER_CODES[name])
        if name == "SP":
            return Operand(opcodes.VAL_PEEK)
        return Operand(opcodes.VAL_IND_NEXT, parse_value(parts[0]))
    if len(parts) != 2:
        raise ValueError(f"Bad indirect operand '[{inner}]'")
    is_reg = [part.upper() in opcodes.REGISTER_CODES or part.upper() == "SP" for part in parts]
    if is_reg.count(True) != 1:
        raise ValueError(f"Indirect operand needs exactly one register: '[{inner}]'")
    reg_idx = is_reg.index(True)
    reg = parts[reg_idx]
    offset = parts[1 - reg_idx]
    if reg.upper() == "SP":
        return Operand(opcodes.VAL_PICK, parse_value(offset))
    return Operand(opcodes.VAL_REG_IND_NEXT + opcodes.REGISTER_CODES[reg.upper()], parse_value(offset))


def parse_operand(token: str, *, is_a: bool) -> Operand:
    token = token.strip()
    if not token:
        raise ValueError("Missing operand")
    upper = re.sub(r"\s+", "", token.upper())

    alias = STACK_ALIASES.get(upper)
    if alias == "push":
        if is_a:
            raise ValueError("PUSH is only valid as the b operand")
        return Operand(opcodes.VAL_PUSH_POP)
    if alias == "pop":
        if not is_a:
            raise ValueError("POP is only valid as the a operand")
        return Operand(opcodes.VAL_PUSH_POP)
    if alias == "peek":
        return Operand(opcodes.VAL_PEEK)

    if upper in opcodes.REGISTER_CODES:
        return Operand(opcodes.VAL_REG + opcodes.REGISTER_CODES[upper])
    if upper == "SP":
        return Operand(opcodes.VAL_SP)
    if upper == "PC":
        return Operand(opcodes.VAL_PC)
    if upper == "EX":
        return Operand(opcodes.VAL_EX)
    m = PICK_RE.fullmatch(token)
    if m:
        return Operand(opcodes.VAL_PICK, parse_value(m.group(1)))

    m = INDIRECT_RE.fullmatch(token)
    if m:
        return _parse_indirect(m.group(1))

    value = parse_value(token)
    if is_a and isinstance(value, int):
        if value == opcodes.WORD_MASK:
            return Operand(opcodes.VAL_SHORT_LITERAL)
        if value <= opcodes.SHORT_LITERAL_MAX:
            return Operand(opcodes.VAL_SHORT_LITERAL + value + 1)
    return Operand(opcodes.VAL_NEXT, value)


def _strip_comment(line: str) -> str:
    return line.split(";", 1)[0].strip()


def _split_label(line: str) -> Tuple[Optional[str], str]:
    if line.startswith(":"):
        parts = line[1:].split(None, 1)
        return parts[0], (parts[1] if len(parts) > 1 else "")
    head, sep, rest = line.partition(":")
    if sep and LABEL_RE.fullmatch(head.strip()):
        return head.strip(), rest.strip()
    return None, line


def assemble(lines: Iterable[str]) -> Image:
    """Two-pass assembly of DCPU-16 source lines into an :class:`Image`."""

    labels: Dict[str, int] = {}
    pending: List[Tuple[int, List[Word]]] = []
    pc = 0

    def define_label(name: str, lineno: int) -> None:
        if not LABEL_RE.fullmatch(name) or name.upper() in opcodes.RESERVED_NAMES:
            raise ValueError(f"line {lineno}: Bad label name '{name}'")
        if name in labels:
            raise ValueError(f"Duplicate label: {name}")
        labels[name] = pc

    for lineno, raw in enumerate(lines, start=1):
        line = _strip_comment(raw)
        if not line:
            continue
        label, line = _split_label(line)
        if label is not None:
            define_label(label, lineno)
        if not line:
            continue

        parts = line.split(None, 1)
        mnemonic = parts[0].upper()
        args = split_args(parts[1] if len(parts) > 1 else "")
        try:
            words = _encode_line(mnemonic, args)
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
        pending.append((lineno, words))
        pc += len(words)
        if pc > opcodes.MEMORY_WORDS:
            raise ValueError(f"line {lineno}: program exceeds {opcodes.MEMORY_WORDS} words")

    out: List[int] = []
    for lineno, words in pending:
        for word in words:
            if isinstance(word, str):
                if word not in labels:
                    raise ValueError(f"line {lineno}: Unknown label {word}")
                word = labels[word]
            out.append(word & opcodes.WORD_MASK)
    return Image(out, labels)


def _encode_line(mnemonic: str, args: List[str]) -> List[Word]:
    if mnemonic == "DAT":
        if not args:
            raise ValueError("DAT expects at least one value")
        return [parse_value(arg) for arg in args]
    if mnemonic in OPC:
        if len(args) != 2:
            raise ValueError(f"{mnemonic} expects two operands")
        b = parse_operand(args[0], is_a=False)
        a = parse_operand(args[1], is_a=True)
        words: List[Word] = [opcodes.encode_instruction(OPC[mnemonic], b.code, a.code)]
        # a is decoded first, so its next word precedes b's.
        if a.next_word is not None:
            words.append(a.next_word)
        if b.next_word is not None:
            words.append(b.next_word)
        return words
    if mnemonic in SPECIAL_OPC:
        if len(args) != 1:
            raise ValueError(f"{mnemonic} expects one operand")
        a = parse_operand(args[0], is_a=True)
        words = [opcodes.encode_instruction(0, SPECIAL_OPC[mnemonic], a.code)]
        if a.next_word is not None:
            words.append(a.next_word)
        return words
    raise ValueError(f"Unknown mnemonic '{mnemonic}'")


def assemble_text(text: str) -> Image:
    return assemble(text.splitlines())


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Assemble DCPU-16 text into a big-endian word image")
    ap.add_argument("input")
    ap.add_argument("-o", "--output", required=True)
    ap.add_argument("--dump-words", action="store_true", help="print assembled words as hex")
    ap.add_argument("--dump-labels", action="store_true", help="print the label table")
    args = ap.parse_args(argv)
    source = Path(args.input).read_text(encoding="utf-8")
    image = assemble_text(source)
    Path(args.output).write_bytes(image.to_bytes())
    if args.dump_words:
        for idx, word in enumerate(image.words):
            print(f"{idx:04X}: {word:04X}")
    if args.dump_labels:
        for name, addr in sorted(image.labels.items(), key=lambda item: item[1]):
            print(f"{addr:04X} {name}")
    print(f"Wrote {args.output} ({len(image.words)} words)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

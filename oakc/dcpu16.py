"""DCPU-16 backend for oakc.

Memory layout of an emitted module (one word per address)::

    0x0000            program image (prelude, runtime, functions, body)
    return_stack_base return-address region, indexed by [call_depth]
    heap_base         bump-allocated heap, grows upward
    ...               value stack, grows downward from SP
    top N words       variables + static heap reservation + 1 sentinel

The machine's ``JSR`` pushes its return address onto the value stack, which
is also where function arguments live. Every function therefore moves the
return address into a separate region on entry and jumps back through it on
exit, which keeps nested and recursive calls working.

The target assembler accepts no unary or binary minus inside operands, so
negative numbers are always written as 16-bit hex words and address
arithmetic only ever uses positive register offsets.

An address operand is the complement of a displacement below the top of
memory (``addr = ~d``). ``store``/``load`` undo the complement and subtract
from 0xFFFF, a round trip that yields the popped value unchanged. It is an
identity on purpose: variable addresses and absolute heap addresses take the
same path, and the base always ends up in a register so every access is a
positive ``[B+k]`` offset.

A multi-word access of ``size`` words touches ``addr`` .. ``addr+size-1``.
Callers must keep that range below 0x10000; for a variable at displacement
``d`` this means ``d >= size - 1``. The machine does not trap, so a range
that wraps lands at address 0 and overwrites the start of the program.
"""

from __future__ import annotations

import contextlib
import logging
import math
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional

from oakc import opcodes
from oakc.target import Target, register_target

_LOGGER = logging.getLogger("oakc.dcpu16")

RUNTIME_PATH = Path(__file__).resolve().parent / "runtime" / "dcpu16_core.dasm"
DEFAULT_OUTPUT = "main.dasm16"

HEAP_BASE = 0x4000
RETURN_STACK_BASE = 0x3F00
RETURN_STACK_DEPTH = 0x100

WORD_MIN = -0x8000
WORD_MAX = 0x7FFF

# Fixed scratch registers; nothing else is clobbered by emitted fragments.
SCRATCH = "A"
BASE = "B"

HEAP_PTR = "heap_ptr"
CALL_DEPTH = "call_depth"
RUNTIME_END = "runtime_end"
ENTRY_LABEL = "start_program"
END_LABEL = "end_of_file"
RESERVED_LABELS = frozenset({HEAP_PTR, CALL_DEPTH, RUNTIME_END, ENTRY_LABEL, END_LABEL})

LABEL_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
INDENT = "    "


def truncate_word(value: float) -> int:
    """Truncate toward zero into a signed 16-bit word, saturating at the edges."""

    if isinstance(value, float):
        if math.isnan(value):
            return 0
        if math.isinf(value):
            return WORD_MAX if value > 0 else WORD_MIN
        value = math.trunc(value)
    return max(WORD_MIN, min(WORD_MAX, int(value)))


def word_literal(value: int) -> str:
    if value < 0:
        return f"0x{value & opcodes.WORD_MASK:04x}"
    return str(value)


def _hex(value: int) -> str:
    return f"0x{value & opcodes.WORD_MASK:04x}"


def _fragment(lines: List[str]) -> str:
    return "".join(f"{line}\n" for line in lines)


def _ins(text: str) -> str:
    return INDENT + text


@register_target("dcpu16")
class Dcpu16Target(Target):
    def __init__(
        self,
        *,
        heap_base: int = HEAP_BASE,
        return_stack_base: int = RETURN_STACK_BASE,
        return_stack_depth: int = RETURN_STACK_DEPTH,
        runtime: Optional[str] = None,
        runtime_path: Optional[os.PathLike] = None,
        output_name: str = DEFAULT_OUTPUT,
    ):
        for field_name, value in (
            ("heap_base", heap_base),
            ("return_stack_base", return_stack_base),
        ):
            if not 0 <= value <= opcodes.WORD_MASK:
                raise ValueError(f"{field_name} must be within 0..0x{opcodes.WORD_MASK:X}")
        if return_stack_depth < 1:
            raise ValueError("return_stack_depth must be positive")
        if return_stack_base + return_stack_depth > heap_base:
            raise ValueError(
                f"return-address region 0x{return_stack_base:04X}+{return_stack_depth} overlaps heap at 0x{heap_base:04X}"
            )
        if runtime is not None and runtime_path is not None:
            raise ValueError("pass either runtime or runtime_path, not both")
        self.heap_base = heap_base
        self.return_stack_base = return_stack_base
        self.return_stack_depth = return_stack_depth
        self.output_name = output_name
        if runtime is None:
            path = Path(runtime_path) if runtime_path is not None else RUNTIME_PATH
            runtime = path.read_text(encoding="utf-8")
        self.runtime = runtime

    # ------------------------------------------------------------------
    # Module framing

    def prelude(self) -> str:
        runtime = self.runtime if self.runtime.endswith("\n") or not self.runtime else self.runtime + "\n"
        head = _fragment([_ins(f"SET PC, {RUNTIME_END}")])
        tail = _fragment([
            f":{HEAP_PTR}",
            _ins("DAT 0"),
            f":{CALL_DEPTH}",
            _ins("DAT 0"),
            f":{RUNTIME_END}",
            _ins(f"SET [{HEAP_PTR}], {_hex(self.heap_base)}"),
            _ins(f"SET [{CALL_DEPTH}], 0"),
            _ins(f"SET PC, {ENTRY_LABEL}"),
        ])
        return head + runtime + tail

    def postlude(self) -> str:
        return _fragment([
            f":{END_LABEL}",
            _ins("SUB PC, 1 ; halt"),
        ])

    def begin_entry_point(self, var_size: int, heap_size: int) -> str:
        if var_size < 0 or heap_size < 0:
            raise ValueError("variable and heap region sizes must be non-negative")
        reserved = var_size + heap_size + 1
        if reserved >= opcodes.MEMORY_WORDS:
            raise ValueError(f"cannot reserve {reserved} words in a {opcodes.MEMORY_WORDS}-word address space")
        return _fragment([
            f":{ENTRY_LABEL}",
            _ins(f"SET SP, {_hex(-reserved)} ; reserve {reserved} words at the top of memory"),
        ])

    def end_entry_point(self) -> str:
        return _fragment([_ins(f"SET PC, {END_LABEL}")])

    # ------------------------------------------------------------------
    # Value-stack arithmetic

    def push(self, value: float) -> str:
        word = truncate_word(value)
        return _fragment([_ins(f"SET PUSH, {word_literal(word)}")])

    # POP is decoded before PEEK, so PEEK already names the deeper slot.
    def add(self) -> str:
        return _fragment([_ins("ADD PEEK, POP")])

    def subtract(self) -> str:
        return _fragment([_ins("SUB PEEK, POP")])

    def multiply(self) -> str:
        return _fragment([_ins("MLI PEEK, POP")])

    def divide(self) -> str:
        return _fragment([_ins("DVI PEEK, POP")])

    # ------------------------------------------------------------------
    # Heap

    def allocate(self) -> str:
        return _fragment([
            _ins("; allocate"),
            _ins(f"SET {SCRATCH}, POP ; requested size in words"),
            _ins(f"SET PUSH, [{HEAP_PTR}] ; address of the new block"),
            _ins(f"ADD [{HEAP_PTR}], {SCRATCH}"),
        ])

    def free(self) -> str:
        return _fragment([
            _ins("; free: memory is never reclaimed"),
            _ins(f"SET {SCRATCH}, POP"),
            _ins(f"SET {SCRATCH}, POP"),
        ])

    # ------------------------------------------------------------------
    # Multi-word memory access

    def _address_to_base(self, size: int, what: str) -> List[str]:
        if size < 1:
            raise ValueError(f"{what} size must be at least one word, got {size}")
        return [
            _ins(f"; {what} {size}"),
            _ins(f"SET {SCRATCH}, POP"),
            _ins(f"XOR {SCRATCH}, 0xffff ; displacement below the top of memory"),
            _ins(f"SET {BASE}, 0xffff"),
            _ins(f"SUB {BASE}, {SCRATCH}"),
        ]

    @staticmethod
    def _cell(offset: int) -> str:
        return f"[{BASE}+{offset}]" if offset else f"[{BASE}]"

    def store(self, size: int) -> str:
        lines = self._address_to_base(size, "store")
        # The most recently pushed word lands at the highest address.
        for offset in range(size - 1, -1, -1):
            lines.append(_ins(f"SET {self._cell(offset)}, POP"))
        return _fragment(lines)

    def load(self, size: int) -> str:
        lines = self._address_to_base(size, "load")
        for offset in range(size):
            lines.append(_ins(f"SET PUSH, {self._cell(offset)}"))
        return _fragment(lines)

    # ------------------------------------------------------------------
    # Calls

    def _check_label(self, name: str) -> None:
        if not LABEL_RE.fullmatch(name) or name.upper() in opcodes.RESERVED_NAMES:
            raise ValueError(f"Bad function name '{name}'")
        if name in RESERVED_LABELS or name.startswith(("loop_start_", "loop_end_")):
            raise ValueError(f"Function name '{name}' collides with a backend label")

    def define_function(self, name: str, body: str) -> str:
        self._check_label(name)
        if body and not body.endswith("\n"):
            body += "\n"
        slot = f"[{BASE}+{_hex(self.return_stack_base)}]"
        entry = _fragment([
            f";startfunc {name}",
            f":{name}",
            _ins(f"SET {SCRATCH}, POP ; return address pushed by JSR"),
            _ins(f"SET {BASE}, [{CALL_DEPTH}]"),
            _ins(f"SET {slot}, {SCRATCH}"),
            _ins(f"ADD [{CALL_DEPTH}], 1"),
        ])
        exit_ = _fragment([
            _ins(f"SUB [{CALL_DEPTH}], 1"),
            _ins(f"SET {BASE}, [{CALL_DEPTH}]"),
            _ins(f"SET PC, {slot}"),
            f";endfunc {name}",
        ])
        return entry + body + exit_

    def call_function(self, name: str) -> str:
        self._check_label(name)
        return _fragment([_ins(f"JSR {name}")])

    def call_foreign_function(self, name: str) -> str:
        # Same instruction as a native call; there is no separate foreign ABI.
        self._check_label(name)
        return _fragment([_ins(f"JSR {name} ; foreign call")])

    # ------------------------------------------------------------------
    # Loops

    def begin_loop(self, loop_id: int) -> str:
        if loop_id < 0:
            raise ValueError(f"loop id must be non-negative, got {loop_id}")
        return _fragment([
            f":loop_start_{loop_id}",
            _ins(f"SET {SCRATCH}, POP"),
            _ins(f"IFE {SCRATCH}, 0"),
            _ins(f"SET PC, loop_end_{loop_id}"),
        ])

    def end_loop(self, loop_id: int) -> str:
        if loop_id < 0:
            raise ValueError(f"loop id must be non-negative, got {loop_id}")
        return _fragment([
            _ins(f"SET PC, loop_start_{loop_id}"),
            f":loop_end_{loop_id}",
        ])

    # ------------------------------------------------------------------
    # Output

    def compile(self, code: str, path: Optional[str] = None) -> bool:
        target = Path(path) if path is not None else Path(self.output_name)
        tmp_name: Optional[str] = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
                fh.write(code)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
        except OSError as exc:
            _LOGGER.error("failed to write %s: %s", target, exc)
            if tmp_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
            return False
        _LOGGER.info("wrote %s (%d lines)", target, code.count("\n"))
        return True

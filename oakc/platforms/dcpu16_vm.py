#!/usr/bin/env python3
"""Reference DCPU-16 interpreter used to execute emitted oakc modules.

Only the processor core is modelled: registers, SP/PC/EX, 0x10000 words of
memory, the basic opcode set and ``JSR``. Hardware and interrupt opcodes stop
the machine with :class:`VMError`.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from oakc import opcodes
from oakc.dasm import assemble_text

_LOGGER = logging.getLogger("oakc.vm")

MASK = opcodes.WORD_MASK
DEFAULT_MAX_STEPS = 100_000


class VMError(RuntimeError):
    pass


def signed(word: int) -> int:
    word &= MASK
    return word - 0x10000 if word & 0x8000 else word


def _div_trunc(a: int, b: int) -> int:
    abs_q = abs(a) // abs(b)
    return -abs_q if (a < 0) ^ (b < 0) else abs_q


class Dcpu16VM:
    def __init__(self, words: Sequence[int], *, entry: int = 0, trace: bool = False):
        if len(words) > opcodes.MEMORY_WORDS:
            raise VMError(f"image of {len(words)} words does not fit in memory")
        self.mem: List[int] = [0] * opcodes.MEMORY_WORDS
        self.mem[: len(words)] = [word & MASK for word in words]
        self.regs: List[int] = [0] * len(opcodes.REGISTERS)
        self.pc = entry & MASK
        self.sp = 0
        self.ex = 0
        self.trace = trace
        self.running = True
        self.steps = 0

    # ------------------------------------------------------------------
    # Register helpers

    def reg(self, name: str) -> int:
        return self.regs[opcodes.REGISTER_CODES[name.upper()]]

    def value_stack(self, base: int) -> List[int]:
        """Return the words between ``SP`` and ``base``, bottom first."""

        if not 0 < base <= opcodes.MEMORY_WORDS:
            raise ValueError(f"stack base 0x{base:X} outside memory")
        # SP == 0 is an empty stack rooted at the very top of memory.
        top = self.sp or opcodes.MEMORY_WORDS
        if top > base:
            raise VMError(f"SP 0x{self.sp:04X} is above stack base 0x{base:04X}")
        return [self.mem[addr] for addr in range(base - 1, top - 1, -1)]

    # ------------------------------------------------------------------
    # Operand decoding

    def _next_word(self) -> int:
        word = self.mem[self.pc]
        self.pc = (self.pc + 1) & MASK
        return word

    def _operand(self, code: int, *, is_a: bool) -> Tuple[str, int]:
        """Resolve an operand to a ``(kind, index)`` location."""

        if code < opcodes.VAL_REG_IND:
            return ("reg", code)
        if code < opcodes.VAL_REG_IND_NEXT:
            return ("mem", self.regs[code - opcodes.VAL_REG_IND])
        if code < opcodes.VAL_PUSH_POP:
            return ("mem", (self.regs[code - opcodes.VAL_REG_IND_NEXT] + self._next_word()) & MASK)
        if code == opcodes.VAL_PUSH_POP:
            if is_a:
                addr = self.sp
                self.sp = (self.sp + 1) & MASK
                return ("mem", addr)
            self.sp = (self.sp - 1) & MASK
            return ("mem", self.sp)
        if code == opcodes.VAL_PEEK:
            return ("mem", self.sp)
        if code == opcodes.VAL_PICK:
            return ("mem", (self.sp + self._next_word()) & MASK)
        if code == opcodes.VAL_SP:
            return ("sp", 0)
        if code == opcodes.VAL_PC:
            return ("pc", 0)
        if code == opcodes.VAL_EX:
            return ("ex", 0)
        if code == opcodes.VAL_IND_NEXT:
            return ("mem", self._next_word())
        if code == opcodes.VAL_NEXT:
            return ("lit", self._next_word())
        return ("lit", (code - opcodes.VAL_SHORT_LITERAL - 1) & MASK)

    def _read(self, loc: Tuple[str, int]) -> int:
        kind, index = loc
        if kind == "reg":
            return self.regs[index]
        if kind == "mem":
            return self.mem[index]
        if kind == "sp":
            return self.sp
        if kind == "pc":
            return self.pc
        if kind == "ex":
            return self.ex
        return index

    def _write(self, loc: Tuple[str, int], value: int) -> None:
        kind, index = loc
        value &= MASK
        if kind == "reg":
            self.regs[index] = value
        elif kind == "mem":
            self.mem[index] = value
        elif kind == "sp":
            self.sp = value
        elif kind == "pc":
            self.pc = value
        elif kind == "ex":
            self.ex = value
        # writes to literals are silently ignored by the hardware

    def _instruction_length(self, addr: int) -> Tuple[int, int]:
        op, b, a = opcodes.decode_instruction(self.mem[addr & MASK])
        length = 1 + int(opcodes.uses_next_word(a))
        if op != 0:
            length += int(opcodes.uses_next_word(b))
        return op, length

    def _skip(self) -> None:
        # A failed conditional also skips any conditionals chained after it.
        while True:
            op, length = self._instruction_length(self.pc)
            self.pc = (self.pc + length) & MASK
            if op not in opcodes.CONDITIONAL_OPCODES:
                return

    # ------------------------------------------------------------------
    # Execution

    def step(self) -> None:
        if not self.running:
            return
        prev_pc = self.pc
        word = self._next_word()
        op, b_code, a_code = opcodes.decode_instruction(word)
        self.steps += 1

        if self.trace:
            _LOGGER.debug("pc=%04X word=%04X sp=%04X regs=%s", prev_pc, word, self.sp, self.regs)

        if op == 0:
            self._special(b_code, a_code, prev_pc)
        else:
            a_loc = self._operand(a_code, is_a=True)
            a = self._read(a_loc)
            b_loc = self._operand(b_code, is_a=False)
            b = self._read(b_loc)
            self._basic(op, b_loc, b, a, prev_pc)

        if self.running and self.pc == prev_pc:
            # Self-jump (``SUB PC, 1``) is the halt idiom.
            self.running = False
            _LOGGER.debug("halt at 0x%04X after %d steps", prev_pc, self.steps)

    def _special(self, op: int, a_code: int, pc: int) -> None:
        if op == 0x01:
            target = self._read(self._operand(a_code, is_a=True))
            self.sp = (self.sp - 1) & MASK
            self.mem[self.sp] = self.pc
            self.pc = target
            return
        name = opcodes.SPECIAL_OPCODE_NAMES.get(op, f"0x{op:02X}")
        self.running = False
        raise VMError(f"unsupported special opcode {name} at 0x{pc:04X}")

    def _basic(self, op: int, b_loc: Tuple[str, int], b: int, a: int, pc: int) -> None:
        write = self._write
        if op == 0x01:  # SET
            write(b_loc, a)
        elif op == 0x02:  # ADD
            total = b + a
            write(b_loc, total)
            self.ex = 1 if total > MASK else 0
        elif op == 0x03:  # SUB
            diff = b - a
            write(b_loc, diff)
            self.ex = MASK if diff < 0 else 0
        elif op == 0x04:  # MUL
            product = b * a
            write(b_loc, product)
            self.ex = (product >> 16) & MASK
        elif op == 0x05:  # MLI
            product = signed(b) * signed(a)
            write(b_loc, product)
            self.ex = (product >> 16) & MASK
        elif op == 0x06:  # DIV
            if a == 0:
                write(b_loc, 0)
                self.ex = 0
            else:
                write(b_loc, b // a)
                self.ex = ((b << 16) // a) & MASK
        elif op == 0x07:  # DVI
            if a == 0:
                write(b_loc, 0)
                self.ex = 0
            else:
                write(b_loc, _div_trunc(signed(b), signed(a)))
                self.ex = _div_trunc(signed(b) << 16, signed(a)) & MASK
        elif op == 0x08:  # MOD
            write(b_loc, 0 if a == 0 else b % a)
        elif op == 0x09:  # MDI
            if a == 0:
                write(b_loc, 0)
            else:
                sb, sa = signed(b), signed(a)
                write(b_loc, sb - _div_trunc(sb, sa) * sa)
        elif op == 0x0A:  # AND
            write(b_loc, b & a)
        elif op == 0x0B:  # BOR
            write(b_loc, b | a)
        elif op == 0x0C:  # XOR
            write(b_loc, b ^ a)
        elif op == 0x0D:  # SHR
            write(b_loc, b >> a)
            self.ex = ((b << 16) >> a) & MASK
        elif op == 0x0E:  # ASR
            write(b_loc, signed(b) >> a)
            self.ex = ((signed(b) << 16) >> a) & MASK
        elif op == 0x0F:  # SHL
            write(b_loc, b << a)
            self.ex = ((b << a) >> 16) & MASK
        elif op == 0x10:  # IFB
            self._branch((b & a) != 0)
        elif op == 0x11:  # IFC
            self._branch((b & a) == 0)
        elif op == 0x12:  # IFE
            self._branch(b == a)
        elif op == 0x13:  # IFN
            self._branch(b != a)
        elif op == 0x14:  # IFG
            self._branch(b > a)
        elif op == 0x15:  # IFA
            self._branch(signed(b) > signed(a))
        elif op == 0x16:  # IFL
            self._branch(b < a)
        elif op == 0x17:  # IFU
            self._branch(signed(b) < signed(a))
        elif op == 0x1A:  # ADX
            total = b + a + self.ex
            write(b_loc, total)
            self.ex = 1 if total > MASK else 0
        elif op == 0x1B:  # SBX
            diff = b - a + signed(self.ex)
            write(b_loc, diff)
            self.ex = MASK if diff < 0 else (1 if diff > MASK else 0)
        elif op == 0x1E:  # STI
            write(b_loc, a)
            self._bump_ij(1)
        elif op == 0x1F:  # STD
            write(b_loc, a)
            self._bump_ij(-1)
        else:
            self.running = False
            raise VMError(f"illegal opcode 0x{op:02X} at 0x{pc:04X}")

    def _branch(self, taken: bool) -> None:
        if not taken:
            self._skip()

    def _bump_ij(self, delta: int) -> None:
        i, j = opcodes.REGISTER_CODES["I"], opcodes.REGISTER_CODES["J"]
        self.regs[i] = (self.regs[i] + delta) & MASK
        self.regs[j] = (self.regs[j] + delta) & MASK

    def run(self, max_steps: int = DEFAULT_MAX_STEPS) -> int:
        """Step until the machine halts; return the number of steps taken."""

        start = self.steps
        while self.running:
            if self.steps - start >= max_steps:
                raise VMError(f"step budget of {max_steps} exhausted at pc=0x{self.pc:04X}")
            self.step()
        return self.steps - start


def run_source(text: str, *, max_steps: int = DEFAULT_MAX_STEPS, trace: bool = False) -> Dcpu16VM:
    image = assemble_text(text)
    vm = Dcpu16VM(image.words, trace=trace)
    vm.run(max_steps)
    return vm


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Run DCPU-16 assembly on the reference VM")
    ap.add_argument("input")
    ap.add_argument("--max-steps", type=int, default=DEFAULT_MAX_STEPS)
    ap.add_argument("--trace", action="store_true", help="log every executed instruction")
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.trace else logging.INFO, format="%(name)s: %(message)s")
    text = Path(args.input).read_text(encoding="utf-8")
    try:
        vm = run_source(text, max_steps=args.max_steps, trace=args.trace)
    except VMError as exc:
        print(f"[VM] {exc}", file=sys.stderr)
        return 1
    regs = " ".join(f"{name}={value:04X}" for name, value in zip(opcodes.REGISTERS, vm.regs))
    print(f"halted after {vm.steps} steps: {regs} SP={vm.sp:04X} EX={vm.ex:04X}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

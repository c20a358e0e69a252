"""
Pytest configuration and fixtures for oakc tests.
"""
from dataclasses import dataclass
from typing import List

import pytest

from oakc import lower
from oakc.dasm import Image, assemble_text
from oakc.dcpu16 import Dcpu16Target
from oakc.platforms.dcpu16_vm import Dcpu16VM, signed


@dataclass
class RunResult:
    vm: Dcpu16VM
    image: Image
    text: str
    stack: List[int]

    def cell(self, label: str) -> int:
        return self.vm.mem[self.image.address_of(label)]


@pytest.fixture
def target():
    return Dcpu16Target()


@pytest.fixture
def run_module(target):
    """Wrap emitted text in a full module, assemble it and run it to halt.

    The returned stack holds signed values, bottom first.
    """

    def _run(body, *, functions="", var_size=8, heap_size=0, max_steps=20_000, backend=None):
        backend = backend or target
        text = lower.wrap_module(backend, body, functions=functions, var_size=var_size, heap_size=heap_size)
        image = assemble_text(text)
        vm = Dcpu16VM(image.words)
        vm.run(max_steps)
        assert vm.pc == image.address_of("end_of_file"), f"halted at 0x{vm.pc:04X}, not at end_of_file"
        base = 0x10000 - (var_size + heap_size + 1)
        stack = [signed(word) for word in vm.value_stack(base)]
        return RunResult(vm, image, text, stack)

    return _run

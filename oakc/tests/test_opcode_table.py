from __future__ import annotations

import re
from pathlib import Path

from oakc import dasm, opcodes
from oakc.platforms import dcpu16_vm


def test_opcode_definitions_shared():
    """Assembler and VM should reference the shared opcode tables."""

    assert dasm.OPC is opcodes.BASIC_OPCODES
    assert dasm.SPECIAL_OPC is opcodes.SPECIAL_OPCODES
    assert dcpu16_vm.opcodes is opcodes


def test_vm_opcode_coverage():
    """Ensure the VM executes every basic opcode defined by the toolchain."""

    vm_source = Path(dcpu16_vm.__file__).read_text(encoding="utf-8")
    pattern = re.compile(r"\b(?:if|elif)\s+op\s*==\s*0x([0-9A-Fa-f]{2})")
    vm_opcodes = {int(match.group(1), 16) for match in pattern.finditer(vm_source)}
    assert vm_opcodes == set(opcodes.BASIC_OPCODES.values())


def test_tables_are_bijective():
    assert len(opcodes.BASIC_OPCODES) == len(opcodes.BASIC_OPCODE_NAMES)
    assert len(opcodes.SPECIAL_OPCODES) == len(opcodes.SPECIAL_OPCODE_NAMES)


def test_encode_decode_fields():
    word = opcodes.encode_instruction(opcodes.BASIC_OPCODES["ADD"], opcodes.VAL_PEEK, opcodes.VAL_PUSH_POP)
    assert word == 0x6322
    assert opcodes.decode_instruction(word) == (0x02, opcodes.VAL_PEEK, opcodes.VAL_PUSH_POP)


def test_next_word_operands():
    assert opcodes.uses_next_word(opcodes.VAL_NEXT)
    assert opcodes.uses_next_word(opcodes.VAL_PICK)
    assert opcodes.uses_next_word(opcodes.VAL_REG_IND_NEXT + 3)
    assert not opcodes.uses_next_word(opcodes.VAL_PEEK)
    assert not opcodes.uses_next_word(opcodes.VAL_SHORT_LITERAL + 5)

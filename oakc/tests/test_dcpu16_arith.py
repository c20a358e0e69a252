import math

import pytest

from oakc import dcpu16


def test_push_then_add_leaves_sum(target, run_module):
    body = target.push(5) + target.push(3) + target.add()
    result = run_module(body)
    assert result.stack == [8]


def test_add_fragment_is_single_instruction(target):
    assert target.add() == "    ADD PEEK, POP\n"


@pytest.mark.parametrize(
    "method,a,b,expected",
    [
        ("subtract", 10, 3, 7),
        ("subtract", 3, 10, -7),
        ("multiply", -4, 3, -12),
        ("multiply", 300, 200, 60000 - 65536),
        ("divide", 7, 2, 3),
        ("divide", -7, 2, -3),  # toward zero
        ("divide", 7, -2, -3),
        ("divide", 5, 0, 0),
    ],
)
def test_binary_ops_use_deeper_slot_as_left_operand(target, run_module, method, a, b, expected):
    body = target.push(a) + target.push(b) + getattr(target, method)()
    assert run_module(body).stack == [expected]


def test_mixed_sequence_depth_and_values(target, run_module):
    body = "".join(target.push(n) for n in range(1, 7))
    body += target.add() + target.multiply() + target.subtract()
    result = run_module(body)
    # [1..6] -> [1,2,3,4,11] -> [1,2,3,44] -> [1,2,-41]
    assert result.stack == [1, 2, -41]
    assert len(result.stack) == 6 - 2 * 3 + 3


@pytest.mark.parametrize("count", [1, 2, 5, 9])
def test_each_arithmetic_op_leaves_stack_one_shallower(target, run_module, count):
    body = "".join(target.push(2) for _ in range(count + 1))
    body += "".join(target.add() for _ in range(count))
    result = run_module(body)
    assert result.stack == [2 * (count + 1)]


@pytest.mark.parametrize(
    "value,expected",
    [
        (3, 3),
        (3.9, 3),
        (-3.9, -3),
        (40000, 32767),
        (-40000, -32768),
        (math.inf, 32767),
        (-math.inf, -32768),
        (math.nan, 0),
    ],
)
def test_truncate_word(value, expected):
    assert dcpu16.truncate_word(value) == expected


def test_negative_push_is_written_as_hex_word(target, run_module):
    assert target.push(-5) == "    SET PUSH, 0xfffb\n"
    assert run_module(target.push(-5)).stack == [-5]


def test_emitted_instructions_never_use_minus(target):
    fragments = [
        target.prelude(),
        target.begin_entry_point(100, 50),
        target.push(-32768),
        target.store(3),
        target.load(3),
        target.define_function("f", target.push(-1)),
        target.begin_loop(7),
        target.end_loop(7),
        target.postlude(),
    ]
    for fragment in fragments:
        for line in fragment.splitlines():
            assert "-" not in line.split(";", 1)[0], line

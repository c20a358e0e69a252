import pytest

from oakc import lower
from oakc.dasm import assemble_text


def _var(target, d, op):
    return target.push(~d) + getattr(target, op)(1)


def test_loop_labels_carry_the_identifier(target):
    begin = target.begin_loop(3)
    end = target.end_loop(3)
    assert begin.splitlines()[0] == ":loop_start_3"
    assert "SET PC, loop_end_3" in begin
    assert end.splitlines() == ["    SET PC, loop_start_3", ":loop_end_3"]


def test_countdown_loop_sums_values(target, run_module):
    counter, total = 0, 1
    body = target.push(3) + _var(target, counter, "store")
    body += target.push(0) + _var(target, total, "store")
    body += _var(target, counter, "load")
    body += target.begin_loop(0)
    body += _var(target, total, "load") + _var(target, counter, "load") + target.add() + _var(target, total, "store")
    body += _var(target, counter, "load") + target.push(1) + target.subtract() + _var(target, counter, "store")
    body += _var(target, counter, "load")
    body += target.end_loop(0)
    body += _var(target, total, "load")

    result = run_module(body)

    assert result.stack == [6]


def test_false_condition_skips_body(target, run_module):
    body = target.push(0) + target.begin_loop(1) + target.push(99) + target.push(0) + target.end_loop(1)
    assert run_module(body).stack == []


def test_negative_control_value_counts_as_true(target, run_module):
    body = target.push(-1) + target.begin_loop(1) + target.push(42) + target.push(0) + target.end_loop(1)
    assert run_module(body).stack == [42]


def test_distinct_ids_assemble_cleanly(target):
    body = ""
    for loop_id in (1, 2):
        body += target.push(0) + target.begin_loop(loop_id) + target.push(0) + target.end_loop(loop_id)
    image = assemble_text(lower.wrap_module(target, body))
    assert image.address_of("loop_start_1") != image.address_of("loop_start_2")


def test_reused_id_is_rejected_by_assembler(target):
    body = ""
    for _ in range(2):
        body += target.push(0) + target.begin_loop(1) + target.push(0) + target.end_loop(1)
    with pytest.raises(ValueError, match="Duplicate label: loop_start_1"):
        assemble_text(lower.wrap_module(target, body))


def test_negative_loop_id_rejected(target):
    with pytest.raises(ValueError):
        target.begin_loop(-1)
    with pytest.raises(ValueError):
        target.end_loop(-1)

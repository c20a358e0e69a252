import textwrap

import pytest

from oakc import dasm


def assemble_source(src: str):
    return dasm.assemble_text(textwrap.dedent(src).strip("\n"))


@pytest.mark.parametrize(
    "line,words",
    [
        ("SET A, 0x30", [0x7C01, 0x0030]),
        ("SET PUSH, 5", [0x9B01]),
        ("ADD PEEK, POP", [0x6322]),
        ("SET A, 0xffff", [0x8001]),
        ("SET [B+0x3f00], A", [0x0221, 0x3F00]),
        ("SET [0x1000], 0x20", [0x7FC1, 0x0020, 0x1000]),
        ("SET PICK 1, B", [0x0741, 0x0001]),
        ("SUB PC, 1", [0x8B83]),
    ],
)
def test_encodings(line, words):
    assert dasm.assemble([line]).words == words


def test_forward_label_reference():
    image = assemble_source(
        """
        :start
            SET PC, done
        done:
            SUB PC, 1
        """
    )
    assert image.words == [0x7F81, 0x0002, 0x8B83]
    assert image.labels == {"start": 0, "done": 2}


def test_special_opcode_with_label():
    image = assemble_source(
        """
            JSR fn
        :fn
            SET PC, POP
        """
    )
    assert image.words[:2] == [0x7C20, 0x0002]


def test_dat_accepts_numbers_and_labels():
    image = assemble_source(
        """
        :table
            DAT 1, 0x10, table
        """
    )
    assert image.words == [1, 0x10, 0]


def test_comments_and_blank_lines_are_ignored():
    image = assemble_source(
        """
        ; header comment

            SET A, 1 ; trailing comment
        """
    )
    assert image.words == [0x8801]


def test_duplicate_label_raises_clear_error():
    with pytest.raises(ValueError, match="Duplicate label: dup"):
        assemble_source(
            """
            :dup
                SET A, 1
            :dup
                SET A, 2
            """
        )


def test_unknown_label_raises():
    with pytest.raises(ValueError, match="Unknown label nowhere"):
        dasm.assemble(["SET PC, nowhere"])


def test_unary_minus_is_rejected():
    with pytest.raises(ValueError, match="Unary minus"):
        dasm.assemble(["SET PUSH, -1"])


@pytest.mark.parametrize(
    "line",
    [
        "SET POP, A",
        "SET A, PUSH",
        "FOO A, B",
        "SET A",
        "JSR",
        "SET A, 0x10000",
        "SET [A+B], 1",
    ],
)
def test_bad_lines_raise(line):
    with pytest.raises(ValueError):
        dasm.assemble([line])


def test_image_to_bytes_is_big_endian():
    image = dasm.assemble(["SET A, 0x30"])
    assert image.to_bytes() == b"\x7c\x01\x00\x30"

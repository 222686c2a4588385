"""Tests for the text rendering streamed by Generate."""

import struct

import numpy as np
import pytest

from embedding_sidecar.api import presentation


def test_hex_tokens_are_ieee754_bit_patterns():
    vector = np.array([1.0, -2.0, 0.0, 0.5], dtype=np.float32)
    assert presentation.hex_tokens(vector) == ["3f800000", "c0000000", "00000000", "3f000000"]


def test_header_reports_dimension_and_range():
    vector = np.array([0.5, -0.25, 1e-9, -2.0], dtype=np.float32)
    header = presentation.render_header("hello", vector)

    assert header.startswith("Embedding generated for: 'hello'\n")
    assert "Dim: 4 | Non-zero: 3 | Range: [0.0000, 2.0000]\n" in header
    assert header.endswith("\n\nVector (hex):\n")


def test_summarize_uses_absolute_values():
    stats = presentation.summarize(np.array([-3.0, 0.125, 0.5], dtype=np.float32))
    assert stats == {"dim": 3, "non_zero": 3, "min_abs": 0.125, "max_abs": 3.0}


def test_render_chunks_layout():
    vector = np.arange(10, dtype=np.float32)
    chunks = presentation.render_chunks("hi", vector)
    header = presentation.render_header("hi", vector)

    header_chunks = chunks[:len(header)]
    assert all(len(text) == 1 and counter == 0 for text, counter in header_chunks)
    assert "".join(text for text, _ in header_chunks) == header

    value_chunks = chunks[len(header):]
    assert [counter for _, counter in value_chunks] == list(range(10))
    assert value_chunks[7][0].endswith("\n")
    assert value_chunks[8][0].endswith(" ")

    body = "".join(text for text, _ in value_chunks)
    lines = body.rstrip().split("\n")
    assert [len(line.split()) for line in lines] == [8, 2]


@pytest.mark.parametrize("dim", [8, 13, 384])
def test_decode_recovers_exact_bits(dim):
    rng = np.random.default_rng(dim)
    vector = rng.standard_normal(dim).astype(np.float32)
    text = "".join(text for text, _ in presentation.render_chunks("round trip", vector))

    decoded = presentation.decode_hex_vector(text)
    assert decoded.tobytes() == vector.tobytes()


def test_decode_matches_struct_packing():
    text = presentation.render_header("x", np.array([1.5], dtype=np.float32)) + "3fc00000 "
    (expected,) = struct.unpack(">f", bytes.fromhex("3fc00000"))
    assert presentation.decode_hex_vector(text)[0] == expected


def test_decode_requires_vector_section():
    with pytest.raises(ValueError):
        presentation.decode_hex_vector("no vector here")


def test_decode_ignores_marker_echoed_in_prompt():
    vector = np.array([1.0, -2.0, 0.5], dtype=np.float32)
    prompt = "show me\nVector (hex):\nplease"
    text = "".join(text for text, _ in presentation.render_chunks(prompt, vector))

    decoded = presentation.decode_hex_vector(text)
    assert decoded.tobytes() == vector.tobytes()

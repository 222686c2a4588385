"""Human-readable rendering of an embedding for the ``Generate`` stream.

The stream is a header block followed by the vector as 8-digit lowercase
hex IEEE-754 bit patterns, eight per line.
"""

from typing import Dict, List, Tuple

import numpy as np

NONZERO_THRESHOLD = 1e-6
VALUES_PER_LINE = 8
VECTOR_MARKER = "Vector (hex):\n"


def summarize(vector: np.ndarray) -> Dict[str, float]:
    """Count and range of absolute values shown in the header."""
    magnitudes = np.abs(np.asarray(vector, dtype=np.float32))
    return {
        "dim": int(magnitudes.size),
        "non_zero": int(np.count_nonzero(magnitudes > NONZERO_THRESHOLD)),
        "min_abs": float(magnitudes.min()) if magnitudes.size else 0.0,
        "max_abs": float(magnitudes.max()) if magnitudes.size else 0.0,
    }


def render_header(prompt: str, vector: np.ndarray) -> str:
    stats = summarize(vector)
    return (
        f"Embedding generated for: '{prompt}'\n"
        f"Dim: {stats['dim']} | Non-zero: {stats['non_zero']} | "
        f"Range: [{stats['min_abs']:.4f}, {stats['max_abs']:.4f}]\n"
        f"\n"
        f"{VECTOR_MARKER}"
    )


def hex_tokens(vector: np.ndarray) -> List[str]:
    """Bit pattern of every float32 value as ``%08x``."""
    bits = np.ascontiguousarray(vector, dtype=np.float32).view(np.uint32)
    return [f"{int(value):08x}" for value in bits]


def render_chunks(prompt: str, vector: np.ndarray) -> List[Tuple[str, int]]:
    """Split the presentation into ``(text, counter)`` chunks.

    Header characters go out one per chunk with counter 0. Each vector value
    is one chunk whose counter is that value's index; the separator after it
    is a newline every eighth value and a space otherwise.
    """
    chunks: List[Tuple[str, int]] = [(ch, 0) for ch in render_header(prompt, vector)]
    for index, token in enumerate(hex_tokens(vector)):
        separator = "\n" if (index + 1) % VALUES_PER_LINE == 0 else " "
        chunks.append((token + separator, index))
    return chunks


def decode_hex_vector(text: str) -> np.ndarray:
    """Recover the float32 vector from concatenated ``Generate`` output.

    Everything up to and including the last ``Vector (hex):`` line is
    skipped; the header echoes the prompt, which may contain the marker.
    """
    _, marker, body = text.rpartition(VECTOR_MARKER)
    if not marker:
        raise ValueError("text does not contain a hex vector section")
    bits = np.array([int(token, 16) for token in body.split()], dtype=np.uint32)
    return bits.view(np.float32)

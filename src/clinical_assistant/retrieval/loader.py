"""
Parsers for the corpus buffers.

The corpus ships as one NumPy `.npy` matrix (plus an optional projection
matrix) and a handful of newline-delimited text files:

- embeddings_id.txt: one hex id per line, aligned with the matrix rows
- parents.txt / titles.txt / urls.txt: `id<TAB>value` records
- is_*.txt: one hex id per line, category membership

Blank lines are ignored everywhere. Any malformed input raises
ConstructionError; nothing is partially loaded.
"""

from __future__ import annotations

import io
from collections.abc import Iterator

import numpy as np

from clinical_assistant.core.exceptions import ConstructionError
from clinical_assistant.retrieval.ids import DocId, decode_doc_id


# ---------------------------------------------------------------------------
# MATRICES
# ---------------------------------------------------------------------------


def load_matrix(buffer: bytes, name: str = "embeddings") -> np.ndarray:
    """
    Load a 2-D float32 matrix from `.npy` bytes.

    The `.npy` header carries the shape and the fortran_order flag, so
    column-major payloads come back with the right logical layout.
    """
    try:
        array = np.load(io.BytesIO(buffer), allow_pickle=False)
    except (ValueError, OSError, EOFError) as e:
        raise ConstructionError(f"{name}: array format is invalid: {e}") from e

    if not isinstance(array, np.ndarray):
        raise ConstructionError(f"{name}: array format is invalid: expected a single .npy array")
    if array.ndim != 2:
        raise ConstructionError(f"{name}: array data shape is invalid: {array.shape}")
    if array.dtype.kind != "f":
        raise ConstructionError(f"{name}: array values must be floats, got {array.dtype}")

    array = np.ascontiguousarray(array, dtype=np.float32)
    if np.isnan(array).any():
        raise ConstructionError(f"{name}: array values must not be NaN")
    if not np.isfinite(array).all():
        raise ConstructionError(f"{name}: array values must be finite")

    array.setflags(write=False)
    return array


# ---------------------------------------------------------------------------
# TEXT SIDE-CHANNELS
# ---------------------------------------------------------------------------


def iter_lines(buffer: bytes) -> Iterator[bytes]:
    """Non-empty `\\n`-delimited lines of `buffer`."""
    for line in buffer.split(b"\n"):
        if line:
            yield line


def parse_id_list(buffer: bytes) -> list[DocId]:
    return [decode_doc_id(line) for line in iter_lines(buffer)]


def parse_id_set(buffer: bytes) -> frozenset[DocId]:
    return frozenset(parse_id_list(buffer))


def parse_records(buffer: bytes, kind: str) -> Iterator[tuple[DocId, bytes]]:
    """Split each line on the first tab into (id, value)."""
    for line in iter_lines(buffer):
        columns = line.split(b"\t", 1)
        if len(columns) != 2:
            raise ConstructionError(f"record format is invalid: {kind} line lacks two columns")
        yield decode_doc_id(columns[0]), columns[1]


def parse_parents(buffer: bytes) -> dict[DocId, DocId]:
    return {doc_id: decode_doc_id(parent) for doc_id, parent in parse_records(buffer, "parent")}


def parse_text_table(buffer: bytes, kind: str) -> dict[DocId, str]:
    table: dict[DocId, str] = {}
    for doc_id, value in parse_records(buffer, kind):
        try:
            table[doc_id] = value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConstructionError(
                f"record format is invalid: {kind} line isn't a valid string"
            ) from e
    return table

"""
In-memory vector store over a static, pre-embedded document corpus.

This module contains:
1. VectorStore - immutable corpus with brute-force similarity search
2. load_vector_store() - Factory reading a corpus directory

The corpus is small enough that a full matrix-vector product per query is
cheaper than maintaining an index. Scores are plain dot products: callers
normalise vectors themselves if they want cosine similarity.

CONCURRENCY:
------------
Nothing is mutated after __init__ returns. Arrays are flagged read-only and
the metadata maps are never exposed for writing, so any number of threads
may query one store without locks.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Set
from pathlib import Path

import numpy as np

from clinical_assistant.core.exceptions import ConstructionError
from clinical_assistant.retrieval.ids import DocId, encode_doc_id
from clinical_assistant.retrieval.loader import (
    load_matrix,
    parse_id_list,
    parse_id_set,
    parse_parents,
    parse_text_table,
)

logger = logging.getLogger(__name__)


# File names inside a corpus directory
EMBEDDINGS_FILE = "embeddings.npy"
PCA_MAPPING_FILE = "embeddings_pca_mapping.npy"
EMBEDDINGS_ID_FILE = "embeddings_id.txt"
PARENTS_FILE = "parents.txt"
TITLES_FILE = "titles.txt"
URLS_FILE = "urls.txt"
IS_INTRODUCTION_FILE = "is_introduction.txt"
IS_CONDITION_FILE = "is_condition.txt"
IS_SYMPTOMS_FILE = "is_symptoms.txt"


class VectorStore:
    """
    Document embeddings plus hierarchy, titles, urls and category sets.

    Row i of `embeddings` belongs to `embeddings_id[i]`. When a PCA mapping
    is configured, the stored rows are already in the mapped space and
    queries must be passed through `get_pca_mapped` before `get_similar`.
    """

    def __init__(
        self,
        embeddings: np.ndarray,
        embeddings_id: list[DocId],
        embeddings_pca_mapping: np.ndarray | None = None,
        parents: Mapping[DocId, DocId] | None = None,
        titles: Mapping[DocId, str] | None = None,
        urls: Mapping[DocId, str] | None = None,
        is_introduction: Iterable[DocId] = (),
        is_condition: Iterable[DocId] = (),
        is_symptoms: Iterable[DocId] = (),
    ):
        embeddings = _frozen_matrix(embeddings, "embeddings")
        if embeddings.shape[0] != len(embeddings_id):
            raise ConstructionError(
                f"array data shape is invalid: {embeddings.shape[0]} rows "
                f"but {len(embeddings_id)} ids"
            )
        _reject_duplicates(embeddings_id)

        if embeddings_pca_mapping is not None:
            embeddings_pca_mapping = _frozen_matrix(embeddings_pca_mapping, "embeddings_pca_mapping")
            if embeddings_pca_mapping.shape[1] != embeddings.shape[1]:
                raise ConstructionError(
                    f"array data shape is invalid: mapping projects to "
                    f"{embeddings_pca_mapping.shape[1]} dimensions, embeddings have "
                    f"{embeddings.shape[1]}"
                )

        self._embeddings = embeddings
        self._embeddings_pca_mapping = embeddings_pca_mapping
        self._ids: tuple[DocId, ...] = tuple(embeddings_id)
        self._id_set = frozenset(self._ids)
        self._parents: dict[DocId, DocId] = dict(parents or {})
        self._titles: dict[DocId, str] = dict(titles or {})
        self._urls: dict[DocId, str] = dict(urls or {})
        self._is_introduction = frozenset(is_introduction)
        self._is_condition = frozenset(is_condition)
        self._is_symptoms = frozenset(is_symptoms)

        logger.info(
            f"Loaded vector store: {len(self._ids)} documents, "
            f"dimension {self.dimension}"
            + (f", PCA mapping {self._embeddings_pca_mapping.shape}" if self.has_mapping else "")
        )

    @classmethod
    def from_buffers(
        cls,
        embeddings: bytes,
        embeddings_pca_mapping: bytes | None,
        embeddings_id: bytes,
        parents: bytes,
        titles: bytes,
        urls: bytes,
        is_introduction: bytes,
        is_condition: bytes,
        is_symptoms: bytes,
    ) -> VectorStore:
        """Build a store from the raw corpus buffers."""
        return cls(
            embeddings=load_matrix(embeddings, "embeddings"),
            embeddings_pca_mapping=(
                load_matrix(embeddings_pca_mapping, "embeddings_pca_mapping")
                if embeddings_pca_mapping is not None
                else None
            ),
            embeddings_id=parse_id_list(embeddings_id),
            parents=parse_parents(parents),
            titles=parse_text_table(titles, "title"),
            urls=parse_text_table(urls, "url"),
            is_introduction=parse_id_set(is_introduction),
            is_condition=parse_id_set(is_condition),
            is_symptoms=parse_id_set(is_symptoms),
        )

    # -----------------------------------------------------------------------
    # SHAPE
    # -----------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        """Dimension of the retrieval space."""
        return self._embeddings.shape[1]

    @property
    def has_mapping(self) -> bool:
        return self._embeddings_pca_mapping is not None

    @property
    def query_dimension(self) -> int:
        """Dimension of vectors accepted by `get_pca_mapped`."""
        if self._embeddings_pca_mapping is not None:
            return self._embeddings_pca_mapping.shape[0]
        return self.dimension

    @property
    def ids(self) -> tuple[DocId, ...]:
        return self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._id_set

    # -----------------------------------------------------------------------
    # SIMILARITY
    # -----------------------------------------------------------------------

    def get_similar(
        self,
        query: np.ndarray,
        n: int,
        filter: Set[DocId] | None = None,
    ) -> list[DocId]:
        """
        Get up to `n` ids whose embeddings score highest against `query`.

        Score is the dot product. If `filter` is given, only ids in it are
        eligible. Order is strictly by descending score; equal scores keep
        row order.
        """
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}")
        query = _check_query(query, self.dimension)

        scores = self._embeddings @ query
        if filter is None:
            rows = np.arange(len(self._ids))
        else:
            rows = np.flatnonzero(
                np.fromiter((doc_id in filter for doc_id in self._ids), dtype=bool, count=len(self._ids))
            )

        # Negating keeps equal scores equal, so the stable sort preserves row order on ties
        order = np.argsort(-scores[rows], kind="stable")
        return [self._ids[row] for row in rows[order[:n]]]

    def get_pca_mapped(self, query: np.ndarray) -> np.ndarray:
        """Get the PCA-mapped version of the embedding `query`."""
        if self._embeddings_pca_mapping is None:
            return query
        return _check_query(query, self._embeddings_pca_mapping.shape[0]) @ self._embeddings_pca_mapping

    # -----------------------------------------------------------------------
    # METADATA
    # -----------------------------------------------------------------------

    def get_parent(self, doc_id: DocId) -> DocId | None:
        return self._parents.get(doc_id)

    def get_title(self, doc_id: DocId) -> str | None:
        return self._titles.get(doc_id)

    def get_url(self, doc_id: DocId) -> str | None:
        return self._urls.get(doc_id)

    @property
    def introduction_ids(self) -> frozenset[DocId]:
        return self._is_introduction

    @property
    def diagnosis_ids(self) -> frozenset[DocId]:
        return self._is_condition

    @property
    def symptom_ids(self) -> frozenset[DocId]:
        return self._is_symptoms

    def is_introduction(self, doc_id: DocId) -> bool:
        """Is the document an introduction section?"""
        return doc_id in self._is_introduction

    def is_diagnosis(self, doc_id: DocId) -> bool:
        """Does the document describe a condition?"""
        return doc_id in self._is_condition

    def is_symptoms(self, doc_id: DocId) -> bool:
        """Is the document a section about symptoms for a condition?"""
        return doc_id in self._is_symptoms

    # -----------------------------------------------------------------------
    # HIERARCHY
    # -----------------------------------------------------------------------

    def iter_lineage(self, doc_id: DocId) -> Iterator[DocId]:
        """
        Yield `doc_id` then each ancestor, nearest first.

        Parent links come from corpus data and may contain cycles; each id
        is yielded at most once, so the walk always terminates.
        """
        seen: set[DocId] = set()
        current: DocId | None = doc_id
        while current is not None:
            if current in seen:
                logger.debug(f"Parent cycle detected at {encode_doc_id(current)}")
                return
            seen.add(current)
            yield current
            current = self._parents.get(current)

    def get_ancestors(self, doc_id: DocId) -> list[DocId]:
        return list(self.iter_lineage(doc_id))[1:]

    def find_ancestor_in(self, doc_id: DocId, candidates: Set[DocId]) -> DocId | None:
        """First of `doc_id` or its ancestors that is in `candidates`."""
        for current in self.iter_lineage(doc_id):
            if current in candidates:
                return current
        return None

    def get_title_path(self, doc_id: DocId) -> list[str]:
        """Titles along the lineage, root first. Untitled nodes are skipped."""
        titles = [self._titles[x] for x in self.iter_lineage(doc_id) if x in self._titles]
        titles.reverse()
        return titles


# ---------------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------------


def _frozen_matrix(array: np.ndarray, name: str) -> np.ndarray:
    array = np.asarray(array)
    if array.ndim != 2:
        raise ConstructionError(f"{name}: array data shape is invalid: {array.shape}")
    if np.isnan(array).any():
        raise ConstructionError(f"{name}: array values must not be NaN")
    if array.dtype != np.float32 or array.flags.writeable:
        with np.errstate(over="ignore"):
            array = np.array(array, dtype=np.float32)
        array.setflags(write=False)
    # Checked after the cast: large float64 values overflow to inf
    if not np.isfinite(array).all():
        raise ConstructionError(f"{name}: array values must be finite")
    return array


def _reject_duplicates(embeddings_id: list[DocId]) -> None:
    seen: set[DocId] = set()
    for doc_id in embeddings_id:
        if doc_id in seen:
            raise ConstructionError(f"duplicate document ID: {encode_doc_id(doc_id)}")
        seen.add(doc_id)


def _check_query(query: np.ndarray, dimension: int) -> np.ndarray:
    with np.errstate(over="ignore"):
        query = np.asarray(query, dtype=np.float32)
    if query.shape != (dimension,):
        raise ValueError(f"query must have shape ({dimension},), got {query.shape}")
    if np.isnan(query).any():
        raise ValueError("query values must not be NaN")
    if not np.isfinite(query).all():
        raise ValueError("query values must be finite")
    return query


# ---------------------------------------------------------------------------
# FACTORY FUNCTION
# ---------------------------------------------------------------------------


def load_vector_store(directory: str | Path) -> VectorStore:
    """
    Load a corpus directory into a VectorStore.

    Every file except the PCA mapping is required.

    Args:
        directory: Directory holding the corpus files

    Returns:
        The constructed store
    """
    directory = Path(directory)

    def read(name: str) -> bytes:
        path = directory / name
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ConstructionError(f"corpus file missing: {path}") from e

    mapping_path = directory / PCA_MAPPING_FILE
    logger.debug(f"Loading corpus from {directory}")
    return VectorStore.from_buffers(
        embeddings=read(EMBEDDINGS_FILE),
        embeddings_pca_mapping=mapping_path.read_bytes() if mapping_path.exists() else None,
        embeddings_id=read(EMBEDDINGS_ID_FILE),
        parents=read(PARENTS_FILE),
        titles=read(TITLES_FILE),
        urls=read(URLS_FILE),
        is_introduction=read(IS_INTRODUCTION_FILE),
        is_condition=read(IS_CONDITION_FILE),
        is_symptoms=read(IS_SYMPTOMS_FILE),
    )

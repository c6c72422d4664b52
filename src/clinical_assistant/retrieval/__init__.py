"""
Retrieval module - vector similarity search for RAG.

This module provides:
- VectorStore: Immutable in-memory corpus with brute-force search
- load_vector_store(): Factory reading a corpus directory
- DocumentFetcher: Document content lookup by id
- decode_doc_id / encode_doc_id: Hex id conversion
"""

from clinical_assistant.retrieval.documents import (
    DocumentFetcher,
    document_url,
    format_excerpt,
    get_excerpts,
)
from clinical_assistant.retrieval.ids import DocId, decode_doc_id, encode_doc_id
from clinical_assistant.retrieval.store import VectorStore, load_vector_store

__all__ = [
    # Ids
    "DocId",
    "decode_doc_id",
    "encode_doc_id",
    # Store
    "VectorStore",
    "load_vector_store",
    # Documents
    "DocumentFetcher",
    "document_url",
    "format_excerpt",
    "get_excerpts",
]

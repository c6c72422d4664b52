"""
Document content lookup.

The store only holds embeddings and metadata. Markdown content lives on a
static origin under a path derived from the id:

    {origin}/db/documents/{h0}/{h1}/{h2}/{hex-id}.md

where h0..h2 are the first three hex characters of the id. A failure to
fetch one document never affects the others: batch helpers drop the failed
id and carry on.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import httpx

from clinical_assistant.config import AssistantConfig, get_config
from clinical_assistant.core.exceptions import DocumentFetchError
from clinical_assistant.core.protocols import DocumentStore
from clinical_assistant.retrieval.ids import DocId, encode_doc_id

logger = logging.getLogger(__name__)


def document_path(doc_id: DocId) -> str:
    hex_id = encode_doc_id(doc_id)
    return f"{'/'.join(hex_id[:3])}/{hex_id}.md"


def document_url(origin: str, doc_id: DocId) -> str:
    return f"{origin.rstrip('/')}/db/documents/{document_path(doc_id)}"


class DocumentFetcher:
    """
    Fetches document markdown over HTTP.

    The httpx client is injected so tests can use httpx.MockTransport.
    """

    def __init__(
        self,
        origin: str,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
    ):
        self.origin = origin
        self._client = http_client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_config(cls, config: AssistantConfig | None = None) -> DocumentFetcher:
        config = config or get_config()
        if not config.document_origin:
            raise ValueError("DOCUMENT_ORIGIN is not configured")
        return cls(config.document_origin, timeout_seconds=config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> DocumentFetcher:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def fetch(self, doc_id: DocId) -> str:
        """Get the markdown for `doc_id`, or raise DocumentFetchError."""
        url = document_url(self.origin, doc_id)
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            raise DocumentFetchError(f"document not available: {url}: {e}", doc_id) from e
        if not response.is_success:
            raise DocumentFetchError(
                f"document not available: {url}: HTTP {response.status_code}", doc_id
            )
        return response.text

    def fetch_many(self, doc_ids: Iterable[DocId]) -> dict[DocId, str]:
        """Fetch each id in order, dropping the ones that fail."""
        documents: dict[DocId, str] = {}
        for doc_id in doc_ids:
            try:
                documents[doc_id] = self.fetch(doc_id)
            except DocumentFetchError as e:
                logger.warning(f"Dropping document {encode_doc_id(doc_id)}: {e}")
        return documents


def format_excerpt(store: DocumentStore, doc_id: DocId, content: str) -> str:
    """
    Render a document for inclusion in a prompt.

    The title path (root first, joined with " > ") becomes a heading, and an
    `<id:...>` tag lets the model cite the document back.
    """
    titles = store.get_title_path(doc_id)
    tag = f"<id:{encode_doc_id(doc_id)}>"
    if titles:
        return f"# {' > '.join(titles)}\n\n{content.strip()}\n\n{tag}"
    return f"{content.strip()}\n\n{tag}"


def get_excerpts(
    store: DocumentStore,
    fetcher: DocumentFetcher,
    doc_ids: Iterable[DocId],
) -> list[str]:
    """Fetch and format each document, skipping any that can't be fetched."""
    return [
        format_excerpt(store, doc_id, content)
        for doc_id, content in fetcher.fetch_many(doc_ids).items()
    ]

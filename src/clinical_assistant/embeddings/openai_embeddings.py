"""
Embeddings Module - Single Responsibility: Generate text embeddings.

It has ONE job: convert text to vector embeddings. Mapping a query into the
corpus's retrieval space is the store's job (VectorStore.get_pca_mapped);
`embed_for_store` just chains the two.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

import numpy as np
from openai import OpenAI

from clinical_assistant.chat.completion import create_openai_client
from clinical_assistant.chat.retry import RetryPolicy, call_with_retry
from clinical_assistant.config import AssistantConfig, get_config
from clinical_assistant.core.exceptions import EmptyResponseError
from clinical_assistant.core.protocols import EmbeddingProvider

if TYPE_CHECKING:
    from clinical_assistant.core.protocols import DocumentStore

logger = logging.getLogger(__name__)


class OpenAIEmbeddings:
    """
    OpenAI-based embedding provider.

    Uses text-embedding-ada-002 by default (1536 dimensions), the model the
    corpus embeddings were produced with.
    """

    def __init__(
        self,
        model: str | None = None,
        config: AssistantConfig | None = None,
        client: OpenAI | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        config = config or get_config()
        self.model = model or config.embedding_model
        self._client = client or create_openai_client(config)
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions for the model."""
        model_dims = {
            "text-embedding-3-small": 1536,
            "text-embedding-3-large": 3072,
            "text-embedding-ada-002": 1536,
        }
        return model_dims.get(self.model, 1536)

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        return self._request(text)[0]

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings for multiple texts efficiently."""
        if not texts:
            return []
        embeddings = self._request(texts)
        if len(embeddings) != len(texts):
            raise EmptyResponseError(
                f"embedding response has {len(embeddings)} vectors for {len(texts)} inputs"
            )
        return embeddings

    def _request(self, inputs: str | list[str]) -> list[np.ndarray]:
        logger.debug(f"Embedding {1 if isinstance(inputs, str) else len(inputs)} text(s) with {self.model}")
        response = call_with_retry(
            lambda: self._client.embeddings.create(input=inputs, model=self.model),
            self.retry_policy,
            operation_name="embedding",
        )
        if not response.data:
            raise EmptyResponseError("embedding response has no data")
        return [
            np.array(item.embedding, dtype=np.float32)
            for item in response.data
        ]


class MockEmbeddings:
    """
    Mock embedding provider for testing without API calls.

    Generates deterministic pseudo-embeddings from text hashes.
    NOT for production use - only for testing/development.
    """

    def __init__(self, dimensions: int = 1536):
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> np.ndarray:
        """Generate deterministic unit-length pseudo-embedding from text hash."""
        seed = int.from_bytes(hashlib.sha256(text.encode()).digest()[:8], "little")
        vector = np.random.default_rng(seed).standard_normal(self._dimensions).astype(np.float32)
        return vector / np.linalg.norm(vector)

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings for multiple texts."""
        return [self.embed(text) for text in texts]


def get_embedding_provider(
    use_mock: bool | None = None,
    config: AssistantConfig | None = None,
) -> EmbeddingProvider:
    """
    Factory function to get the appropriate embedding provider.

    Args:
        use_mock: If True, return MockEmbeddings (config default if None)
        config: Assistant configuration (global config if not provided)
    """
    config = config or get_config()
    if use_mock is None:
        use_mock = config.use_mock_embeddings
    if use_mock:
        return MockEmbeddings()
    return OpenAIEmbeddings(config=config)


def embed_for_store(
    text: str,
    store: DocumentStore,
    embeddings: EmbeddingProvider,
) -> np.ndarray:
    """
    Embed `text` and map it into the store's retrieval space.

    Raises:
        ValueError: The embedding contains non-finite values
    """
    embedding = np.asarray(embeddings.embed(text), dtype=np.float32)
    if not np.isfinite(embedding).all():
        raise ValueError("embedding values must be finite")
    return store.get_pca_mapped(embedding)

"""
Embeddings module - text embedding generation.

1. Protocol (EmbeddingProvider) defines the interface
2. Production implementation (OpenAIEmbeddings)
3. Test double (MockEmbeddings) for fast testing
4. Factory function (get_embedding_provider)
"""

from clinical_assistant.core.protocols import EmbeddingProvider
from clinical_assistant.embeddings.openai_embeddings import (
    MockEmbeddings,
    OpenAIEmbeddings,
    embed_for_store,
    get_embedding_provider,
)

__all__ = [
    "EmbeddingProvider",
    "OpenAIEmbeddings",
    "MockEmbeddings",
    "get_embedding_provider",
    "embed_for_store",
]

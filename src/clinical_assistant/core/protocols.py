"""
Core protocols defining contracts for the entire system.

All infrastructure components implement these protocols,
enabling dependency injection and easy testing.

PATTERN:
--------
- Protocol defines the contract
- Concrete implementations take their collaborators as constructor arguments
- Test doubles (MockEmbeddings, MagicMock SDK clients) keep unit tests offline
- Factory functions handle instantiation from configuration
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Set
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from pydantic import BaseModel

    from clinical_assistant.chat.messages import ChatCompletionArgs, ChatCompletionResponse

T = TypeVar("T", bound="BaseModel")


# ---------------------------------------------------------------------------
# EMBEDDING PROVIDER PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Contract for embedding generation.

    Implementations:
    - OpenAIEmbeddings (production)
    - MockEmbeddings (testing)
    """

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        ...

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings for multiple texts."""
        ...


# ---------------------------------------------------------------------------
# DOCUMENT STORE PROTOCOL
# ---------------------------------------------------------------------------


@runtime_checkable
class DocumentStore(Protocol):
    """
    Contract for similarity lookup over a static corpus.

    Implementations:
    - VectorStore (in-memory, brute force)
    """

    def get_similar(
        self,
        query: np.ndarray,
        n: int,
        filter: Set[bytes] | None = None,
    ) -> list[bytes]:
        """Ids of the `n` rows scoring highest against `query`."""
        ...

    def get_pca_mapped(self, query: np.ndarray) -> np.ndarray:
        """Project `query` into retrieval space."""
        ...

    def get_parent(self, doc_id: bytes) -> bytes | None:
        ...

    def get_title(self, doc_id: bytes) -> str | None:
        ...

    def get_url(self, doc_id: bytes) -> str | None:
        ...

    def get_title_path(self, doc_id: bytes) -> list[str]:
        """Titles from the root of the hierarchy down to `doc_id`."""
        ...


# ---------------------------------------------------------------------------
# CHAT COMPLETION PROTOCOLS
# ---------------------------------------------------------------------------


@runtime_checkable
class ChatCompleter(Protocol):
    """
    Contract for request/response chat completion.

    Implementations:
    - ChatCompletionClient (OpenAI SDK)
    """

    def complete(self, args: ChatCompletionArgs) -> ChatCompletionResponse:
        ...

    def complete_function(
        self,
        args: ChatCompletionArgs,
        output_type: type[T],
        name: str,
        description: str | None = None,
    ) -> T:
        ...


@runtime_checkable
class CompletionStream(Protocol):
    """
    Contract for a single-consumer, forward-only completion stream.

    `next()` returns a snapshot after every change and `None` once the
    stream has ended; `None` is returned again on every later call.
    """

    def next(self) -> ChatCompletionResponse | None:
        ...

    def __iter__(self) -> Iterator[ChatCompletionResponse]:
        ...

    def iter_content(self) -> Iterable[str]:
        ...

    def close(self) -> None:
        ...

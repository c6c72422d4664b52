"""
Clinical assistant core: corpus retrieval and resilient chat completion.

USAGE:
------
from clinical_assistant import (
    ChatCompletionArgs, ChatMessage, StreamingChatClient,
    embed_for_store, get_embedding_provider, load_vector_store,
)

store = load_vector_store("corpus/")
query = embed_for_store(statement, store, get_embedding_provider())
doc_ids = store.get_similar(query, 8)

args = ChatCompletionArgs().with_message(ChatMessage.user(statement))
with StreamingChatClient().stream(args) as stream:
    for text in stream.iter_content():
        ...
"""

from clinical_assistant.chat import (
    ChatCompletionArgs,
    ChatCompletionClient,
    ChatCompletionResponse,
    ChatMessage,
    RetryPolicy,
    StreamingChatClient,
)
from clinical_assistant.config import AssistantConfig, get_config
from clinical_assistant.embeddings import embed_for_store, get_embedding_provider
from clinical_assistant.retrieval import DocumentFetcher, VectorStore, load_vector_store

__version__ = "0.1.0"

__all__ = [
    "AssistantConfig",
    "get_config",
    "VectorStore",
    "load_vector_store",
    "DocumentFetcher",
    "embed_for_store",
    "get_embedding_provider",
    "ChatCompletionArgs",
    "ChatCompletionClient",
    "ChatCompletionResponse",
    "ChatMessage",
    "RetryPolicy",
    "StreamingChatClient",
]

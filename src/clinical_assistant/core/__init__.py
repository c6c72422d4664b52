"""
Core module - shared protocols and errors for the entire system.

USAGE:
------
from clinical_assistant.core import DocumentStore, EmbeddingProvider

class MyStore:
    '''Implements DocumentStore protocol.'''
    ...
"""

from clinical_assistant.core.exceptions import (
    AssistantError,
    ConstructionError,
    DocumentFetchError,
    EmptyResponseError,
    ProtocolError,
    SchemaError,
    TransportError,
)
from clinical_assistant.core.protocols import (
    ChatCompleter,
    CompletionStream,
    DocumentStore,
    EmbeddingProvider,
)

__all__ = [
    # Protocols
    "EmbeddingProvider",
    "DocumentStore",
    "ChatCompleter",
    "CompletionStream",
    # Errors
    "AssistantError",
    "ConstructionError",
    "TransportError",
    "ProtocolError",
    "EmptyResponseError",
    "SchemaError",
    "DocumentFetchError",
]

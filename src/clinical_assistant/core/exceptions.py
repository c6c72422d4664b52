"""
Error taxonomy shared by the retrieval store and the completion clients.

Every failure surfaced to callers is one of these types, so an orchestration
layer can tell a transport problem (retry later) from a schema problem (the
model answered in the wrong shape) from a protocol problem (the stream itself
was corrupt) without inspecting messages.

    AssistantError
    ├── ConstructionError    corpus buffers are malformed; no store is built
    ├── TransportError       network/server failure, after retries
    ├── ProtocolError        malformed stream event or response payload
    ├── EmptyResponseError   no choices, or the expected field is missing
    ├── SchemaError          structured output never matched, after retries
    └── DocumentFetchError   one document could not be fetched
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all errors raised by this package."""


class ConstructionError(AssistantError):
    """The corpus could not be loaded from the provided buffers."""


class TransportError(AssistantError):
    """A request to the remote service failed and will not be retried further."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class ProtocolError(AssistantError):
    """A payload from the remote service could not be decoded."""


class EmptyResponseError(AssistantError):
    """The remote service answered, but without the content we asked for."""


class SchemaError(AssistantError):
    """Structured output failed to parse on every attempt."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class DocumentFetchError(AssistantError):
    """The content of a single document could not be fetched."""

    def __init__(self, message: str, doc_id: bytes):
        super().__init__(message)
        self.doc_id = doc_id

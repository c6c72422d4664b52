"""
Chat module - completion clients for the OpenAI chat API.

This module provides:
- ChatCompletionClient: request/response completion, incl. structured output
- StreamingChatClient: incremental completion merged into one response
- ChatCompletionArgs / ChatMessage / ChatCompletionResponse: request and response models
- RetryPolicy: shared transport retry/backoff settings
"""

from clinical_assistant.chat.completion import (
    RETRY_TEMPERATURE,
    ChatCompletionClient,
    create_openai_client,
)
from clinical_assistant.chat.messages import (
    ChatChoice,
    ChatCompletionArgs,
    ChatCompletionResponse,
    ChatMessage,
    FinishReason,
    FunctionCall,
    FunctionSpec,
    Role,
)
from clinical_assistant.chat.retry import RetryPolicy, call_with_retry
from clinical_assistant.chat.streaming import (
    StreamingChatClient,
    StreamingChatCompletion,
    StreamingMergeState,
)

__all__ = [
    # Clients
    "ChatCompletionClient",
    "StreamingChatClient",
    "StreamingChatCompletion",
    "StreamingMergeState",
    "create_openai_client",
    "RETRY_TEMPERATURE",
    # Models
    "ChatCompletionArgs",
    "ChatCompletionResponse",
    "ChatChoice",
    "ChatMessage",
    "FinishReason",
    "FunctionCall",
    "FunctionSpec",
    "Role",
    # Retry
    "RetryPolicy",
    "call_with_retry",
]

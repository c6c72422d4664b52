"""
Chat completion request and response models.

These Pydantic models are the contract between the clients and the rest of
the system. Responses from the SDK (non-streaming) and the merged result of
a stream (streaming) both end up as a ChatCompletionResponse, so callers
never care which path produced it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Role(str, Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    FUNCTION = "function"


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    FUNCTION_CALL = "function_call"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


class FunctionCall(BaseModel):
    """A function invocation emitted by the model; `arguments` is raw JSON text."""

    name: str
    arguments: str


class ChatMessage(BaseModel):
    """One message in a conversation."""

    role: Role
    content: str | None = None
    name: str | None = None
    function_call: FunctionCall | None = None

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(role=Role.ASSISTANT, content=content)


class ChatChoice(BaseModel):
    message: ChatMessage
    finish_reason: FinishReason | None = None


class ChatCompletionResponse(BaseModel):
    """
    A complete (or, while streaming, partially merged) completion.

    Only the first choice is ever populated by this system.
    """

    choices: list[ChatChoice] = Field(default_factory=list)

    @property
    def message(self) -> ChatMessage | None:
        return self.choices[0].message if self.choices else None

    @property
    def content(self) -> str | None:
        message = self.message
        return message.content if message is not None else None


class FunctionSpec(BaseModel):
    """A function the model may be forced to answer through."""

    name: str
    description: str | None = None
    parameters: dict[str, Any]

    @classmethod
    def for_model(
        cls,
        output_type: type[BaseModel],
        name: str,
        description: str | None = None,
    ) -> FunctionSpec:
        """Describe `output_type` as a function whose parameters are its JSON schema."""
        return cls(
            name=name,
            description=description,
            parameters=output_type.model_json_schema(),
        )


@dataclass(frozen=True)
class ChatCompletionArgs:
    """
    Everything needed to issue one completion request, except credentials.

    Builder methods return a new instance, so a base set of args can be
    shared and specialised per call.

    Example:
        >>> args = (
        ...     ChatCompletionArgs()
        ...     .with_message(ChatMessage.system("You are a clinician."))
        ...     .with_message(ChatMessage.user("Headache for 3 days."))
        ...     .with_temperature(0.2)
        ... )
    """

    messages: tuple[ChatMessage, ...] = ()
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    functions: tuple[FunctionSpec, ...] | None = None
    function_call: str | None = None

    def with_model(self, model: str) -> ChatCompletionArgs:
        return replace(self, model=model)

    def with_message(self, message: ChatMessage) -> ChatCompletionArgs:
        return replace(self, messages=(*self.messages, message))

    def with_messages(self, messages: list[ChatMessage]) -> ChatCompletionArgs:
        return replace(self, messages=(*self.messages, *messages))

    def with_max_tokens(self, max_tokens: int) -> ChatCompletionArgs:
        return replace(self, max_tokens=max_tokens)

    def with_temperature(self, temperature: float) -> ChatCompletionArgs:
        return replace(self, temperature=temperature)

    def with_no_functions(self) -> ChatCompletionArgs:
        return replace(self, functions=None, function_call=None)

    def with_function(self, function: FunctionSpec) -> ChatCompletionArgs:
        return replace(self, functions=(*(self.functions or ()), function))

    def with_function_call(self, name: str) -> ChatCompletionArgs:
        """Force the model to answer through the function called `name`."""
        return replace(self, function_call=name)

    def to_request(self, stream: bool, default_model: str | None = None) -> dict[str, Any]:
        """Keyword arguments for `chat.completions.create`; unset fields are omitted."""
        model = self.model or default_model
        if model is None:
            raise ValueError("No model configured for chat completion")

        request: dict[str, Any] = {
            "model": model,
            "messages": [m.model_dump(mode="json", exclude_none=True) for m in self.messages],
            "stream": stream,
        }
        if self.max_tokens is not None:
            request["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            request["temperature"] = self.temperature
        if self.functions:
            request["functions"] = [f.model_dump(exclude_none=True) for f in self.functions]
        if self.function_call is not None:
            request["function_call"] = {"name": self.function_call}
        return request

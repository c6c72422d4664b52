"""
Streaming chat completion: server-sent events merged into one response.

The server pushes `data:` events, each carrying a JSON chunk with a delta
for the first choice, and ends with `data: [DONE]`. Deltas are merged into
a single accumulating response:

- the first delta materialises the choice (role defaults to assistant,
  content to "", function-call sub-fields to "")
- later deltas append content, name and function-call fragments, and
  overwrite role and finish_reason
- blank payloads and [DONE] change nothing

Consumers pull with `next()`. Each call returns a snapshot as soon as a
merge changes the response, or None once the stream has ended; None is
returned again on every later call. The stream is single-consumer and
forward-only.

Example:
    >>> client = StreamingChatClient()
    >>> with client.stream(args) as stream:
    ...     for text in stream.iter_content():
    ...         render(text)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import ExitStack
from dataclasses import dataclass, field

import httpx
import openai
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from clinical_assistant.chat.completion import create_openai_client
from clinical_assistant.chat.messages import (
    ChatChoice,
    ChatCompletionArgs,
    ChatCompletionResponse,
    ChatMessage,
    FinishReason,
    FunctionCall,
    Role,
)
from clinical_assistant.chat.retry import RetryPolicy, call_with_retry
from clinical_assistant.config import AssistantConfig, get_config
from clinical_assistant.core.exceptions import ProtocolError, TransportError

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


# ---------------------------------------------------------------------------
# SERVER-SENT EVENT FRAMING
# ---------------------------------------------------------------------------


def iter_lines(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """
    Split a byte stream into lines on LF, CR or CRLF.

    Lines are yielded without their terminator. A trailing line with no
    terminator is dropped: it can only belong to an unfinished event.
    """
    pending = b""
    for chunk in chunks:
        if not chunk:
            continue
        lines = (pending + chunk).splitlines(keepends=True)
        # Hold back an unterminated tail, and a bare CR that may be half a CRLF
        pending = lines.pop() if not lines[-1].endswith(b"\n") else b""
        for line in lines:
            yield line.rstrip(b"\r\n")
    if pending.endswith(b"\r"):
        yield pending.rstrip(b"\r")


def iter_sse_data(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """
    Yield the data payload of each event in an event stream.

    Multiple `data:` lines in one event are joined with a newline. Comment
    lines and the event/id/retry fields are ignored. Events with no data
    lines are not dispatched.
    """
    data_lines: list[bytes] = []
    for line in iter_lines(chunks):
        if not line:
            if data_lines:
                yield b"\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(b":"):
            continue
        name, sep, value = line.partition(b":")
        if sep and value.startswith(b" "):
            value = value[1:]
        if name == b"data":
            data_lines.append(value)


# ---------------------------------------------------------------------------
# DELTA PAYLOADS
# ---------------------------------------------------------------------------


class FunctionCallDelta(BaseModel):
    name: str | None = None
    arguments: str | None = None


class MessageDelta(BaseModel):
    role: Role | None = None
    content: str | None = None
    name: str | None = None
    function_call: FunctionCallDelta | None = None


class ChoiceDelta(BaseModel):
    delta: MessageDelta = Field(default_factory=MessageDelta)
    finish_reason: FinishReason | None = None


class CompletionChunk(BaseModel):
    choices: list[ChoiceDelta] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# MERGE STATE
# ---------------------------------------------------------------------------


class AppendOnlyText:
    """
    A text field that is either unset or accumulating.

    The first append creates the value; later appends extend it. The value
    is never truncated.
    """

    __slots__ = ("_text",)

    def __init__(self, initial: str | None = None):
        self._text = initial

    @property
    def is_set(self) -> bool:
        return self._text is not None

    @property
    def value(self) -> str | None:
        return self._text

    def append(self, fragment: str) -> None:
        self._text = fragment if self._text is None else self._text + fragment

    def __repr__(self) -> str:
        return f"AppendOnlyText({self._text!r})"


@dataclass
class MergedFunctionCall:
    name: AppendOnlyText = field(default_factory=lambda: AppendOnlyText(""))
    arguments: AppendOnlyText = field(default_factory=lambda: AppendOnlyText(""))

    def apply(self, delta: FunctionCallDelta) -> None:
        if delta.name is not None:
            self.name.append(delta.name)
        if delta.arguments is not None:
            self.arguments.append(delta.arguments)

    def to_function_call(self) -> FunctionCall:
        return FunctionCall(name=self.name.value or "", arguments=self.arguments.value or "")


@dataclass
class MergedChoice:
    """One choice being assembled from deltas."""

    role: Role = Role.ASSISTANT
    content: AppendOnlyText = field(default_factory=AppendOnlyText)
    name: AppendOnlyText = field(default_factory=AppendOnlyText)
    function_call: MergedFunctionCall | None = None
    finish_reason: FinishReason | None = None

    @classmethod
    def from_delta(cls, delta: MessageDelta, finish_reason: FinishReason | None) -> MergedChoice:
        choice = cls(
            role=delta.role or Role.ASSISTANT,
            content=AppendOnlyText(delta.content or ""),
            name=AppendOnlyText(delta.name),
            finish_reason=finish_reason,
        )
        if delta.function_call is not None:
            choice.function_call = MergedFunctionCall()
            choice.function_call.apply(delta.function_call)
        return choice

    def apply(self, delta: MessageDelta, finish_reason: FinishReason | None) -> bool:
        """Merge `delta` in place. Returns True if anything changed."""
        changed = False
        if delta.content is not None:
            self.content.append(delta.content)
            changed = True
        if delta.role is not None:
            self.role = delta.role
            changed = True
        if delta.name is not None:
            self.name.append(delta.name)
            changed = True
        if delta.function_call is not None:
            if self.function_call is None:
                self.function_call = MergedFunctionCall()
            self.function_call.apply(delta.function_call)
            changed = True
        if finish_reason is not None:
            self.finish_reason = finish_reason
            changed = True
        return changed

    def to_choice(self) -> ChatChoice:
        return ChatChoice(
            message=ChatMessage(
                role=self.role,
                content=self.content.value,
                name=self.name.value,
                function_call=(
                    self.function_call.to_function_call() if self.function_call is not None else None
                ),
            ),
            finish_reason=self.finish_reason,
        )


class StreamingMergeState:
    """The accumulating response. Only the first choice is ever populated."""

    def __init__(self):
        self.choices: list[MergedChoice] = []

    def apply_payload(self, data: bytes) -> bool:
        """
        Merge one event payload. Returns True if the response changed.

        Raises:
            ProtocolError: The payload isn't UTF-8 or isn't a valid chunk
        """
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"chat encoding error: {e}") from e
        if text == DONE_MARKER or not text.strip():
            return False

        try:
            chunk = CompletionChunk.model_validate_json(text)
        except ValidationError as e:
            raise ProtocolError(f"chat format error: {e}") from e
        if not chunk.choices:
            return False

        update = chunk.choices[0]
        if not self.choices:
            self.choices.append(MergedChoice.from_delta(update.delta, update.finish_reason))
            return True
        return self.choices[0].apply(update.delta, update.finish_reason)

    def snapshot(self) -> ChatCompletionResponse:
        return ChatCompletionResponse(choices=[choice.to_choice() for choice in self.choices])


# ---------------------------------------------------------------------------
# PULL INTERFACE
# ---------------------------------------------------------------------------


class StreamingChatCompletion:
    """
    A streaming response being merged as it arrives.

    Abandoning the stream (close(), or leaving the `with` block) releases
    the connection and discards the partial response. A stream dropped
    without either is released when it is garbage collected; call close()
    to release it deterministically.
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        on_close: Callable[[], None] | None = None,
    ):
        self._payloads = iter_sse_data(chunks)
        self._state = StreamingMergeState()
        self._on_close = on_close
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def response(self) -> ChatCompletionResponse:
        """Snapshot of everything merged so far."""
        return self._state.snapshot()

    def next(self) -> ChatCompletionResponse | None:
        """
        Merge events until the response changes.

        Returns:
            A snapshot of the response, or None once the stream has ended

        Raises:
            ProtocolError: A malformed event; the stream is over
            TransportError: The connection failed mid-stream; the stream is over
        """
        if self._done:
            return None
        while True:
            try:
                payload = next(self._payloads)
            except StopIteration:
                logger.debug("Chat completion stream ended")
                self._release()
                return None
            except (httpx.HTTPError, openai.APIError) as e:
                self._release()
                raise TransportError(f"chat completion stream failed: {e}") from e

            try:
                changed = self._state.apply_payload(payload)
            except ProtocolError:
                self._release()
                raise
            if changed:
                return self._state.snapshot()

    def __iter__(self) -> Iterator[ChatCompletionResponse]:
        while True:
            response = self.next()
            if response is None:
                return
            yield response

    def iter_content(self) -> Iterator[str]:
        """Accumulated content text after each change."""
        for response in self:
            yield response.content or ""

    def close(self) -> None:
        """Release the connection and drop the partial response."""
        self._release()
        self._state = StreamingMergeState()

    def _release(self) -> None:
        self._done = True
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            on_close()

    def __enter__(self) -> StreamingChatCompletion:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __del__(self) -> None:
        self._release()


class StreamingChatClient:
    """
    Opens streaming chat completions over the OpenAI SDK.

    The request phase is retried per RetryPolicy. Once the stream is open,
    failures are not retried: a partial stream can't be resumed.
    """

    def __init__(
        self,
        config: AssistantConfig | None = None,
        client: OpenAI | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.config = config or get_config()
        self._client = client or create_openai_client(self.config)
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)

    def stream(self, args: ChatCompletionArgs) -> StreamingChatCompletion:
        """
        Submit `args` for incremental delivery.

        Raises:
            TransportError: The request failed and retries are exhausted
        """
        request = args.to_request(stream=True, default_model=self.config.chat_model)
        resources = ExitStack()

        def open_stream():
            return resources.enter_context(
                self._client.chat.completions.with_streaming_response.create(**request)
            )

        response = call_with_retry(open_stream, self.retry_policy, operation_name="chat completion stream")
        return StreamingChatCompletion(response.iter_bytes(), on_close=resources.close)

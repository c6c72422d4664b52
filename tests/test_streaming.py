"""
Unit Tests for Streaming Chat Completion

Tests event-stream framing, delta merging, the pull interface and the
streaming client. Byte streams are plain lists of chunks; the SDK client
is a MagicMock.
"""

import gc
import json

import httpx
import pytest
from unittest.mock import MagicMock

from clinical_assistant.chat.messages import ChatCompletionArgs, ChatMessage, FinishReason, Role
from clinical_assistant.chat.streaming import (
    AppendOnlyText,
    StreamingChatClient,
    StreamingChatCompletion,
    StreamingMergeState,
    iter_lines,
    iter_sse_data,
)
from clinical_assistant.core import CompletionStream, ProtocolError, TransportError

from conftest import status_error


# ---------------------------------------------------------------------------
# FIXTURES
# ---------------------------------------------------------------------------


def event(delta: dict, finish_reason=None) -> bytes:
    """One SSE event carrying a single-choice chunk."""
    chunk = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return f"data: {json.dumps(chunk)}\n\n".encode()


DONE = b"data: [DONE]\n\n"


def open_stream(*chunks: bytes) -> StreamingChatCompletion:
    return StreamingChatCompletion(list(chunks))


@pytest.fixture
def args():
    return ChatCompletionArgs().with_message(ChatMessage.user("Headache for three days."))


@pytest.fixture
def streaming_response(openai_client):
    """The object the SDK's streaming context manager yields."""
    manager = MagicMock()
    openai_client.chat.completions.with_streaming_response.create.return_value = manager
    response = manager.__enter__.return_value
    response.iter_bytes.return_value = [
        event({"role": "assistant"}),
        event({"content": "Hello"}),
        DONE,
    ]
    return manager


@pytest.fixture
def client(config, openai_client, retry_policy):
    return StreamingChatClient(config=config, client=openai_client, retry_policy=retry_policy)


# ---------------------------------------------------------------------------
# FRAMING
# ---------------------------------------------------------------------------


class TestEventFraming:
    """Test line splitting and event assembly."""

    def test_mixed_line_endings(self):
        assert list(iter_lines([b"a\nb\r\nc\rd\n"])) == [b"a", b"b", b"c", b"d"]

    def test_crlf_split_across_chunks(self):
        assert list(iter_lines([b"a\r", b"\nb\n"])) == [b"a", b"b"]

    def test_line_split_across_chunks(self):
        assert list(iter_lines([b"da", b"ta: x", b"\n"])) == [b"data: x"]

    def test_unterminated_tail_dropped(self):
        assert list(iter_lines([b"a\nincomplete"])) == [b"a"]

    def test_events_split_on_blank_line(self):
        payloads = list(iter_sse_data([b"data: one\n\ndata: two\n\n"]))

        assert payloads == [b"one", b"two"]

    def test_multiline_data_joined(self):
        assert list(iter_sse_data([b"data: a\ndata: b\n\n"])) == [b"a\nb"]

    def test_comments_and_other_fields_ignored(self):
        stream = [b": keep-alive\n\nevent: message\nid: 7\ndata: x\n\n"]

        assert list(iter_sse_data(stream)) == [b"x"]

    def test_only_one_leading_space_stripped(self):
        assert list(iter_sse_data([b"data:  x\n\ndata:y\n\n"])) == [b" x", b"y"]

    def test_unfinished_event_discarded(self):
        assert list(iter_sse_data([b"data: one\n\ndata: two\n"])) == [b"one"]


# ---------------------------------------------------------------------------
# MERGING
# ---------------------------------------------------------------------------


class TestMerge:
    """Test delta merging."""

    def test_append_only_text(self):
        text = AppendOnlyText()
        assert not text.is_set

        text.append("He")
        text.append("llo")

        assert text.value == "Hello"

    def test_first_delta_defaults(self):
        state = StreamingMergeState()

        assert state.apply_payload(json.dumps({"choices": [{"delta": {}}]}).encode())

        message = state.snapshot().message
        assert message.role == Role.ASSISTANT
        assert message.content == ""
        assert message.function_call is None

    def test_done_and_blank_change_nothing(self):
        state = StreamingMergeState()

        assert not state.apply_payload(b"[DONE]")
        assert not state.apply_payload(b"   ")
        assert not state.apply_payload(b'{"choices": []}')
        assert state.snapshot().choices == []

    def test_empty_delta_after_first_changes_nothing(self):
        state = StreamingMergeState()
        state.apply_payload(b'{"choices": [{"delta": {"role": "assistant"}}]}')

        assert not state.apply_payload(b'{"choices": [{"delta": {}}]}')

    def test_function_call_accumulates(self):
        state = StreamingMergeState()
        for delta in (
            {"role": "assistant", "function_call": {"name": "diag"}},
            {"function_call": {"name": "nose", "arguments": '{"condition": '}},
            {"function_call": {"arguments": '"migraine"}'}},
        ):
            state.apply_payload(json.dumps({"choices": [{"delta": delta}]}).encode())

        function_call = state.snapshot().message.function_call
        assert function_call.name == "diagnose"
        assert json.loads(function_call.arguments) == {"condition": "migraine"}

    def test_malformed_json(self):
        with pytest.raises(ProtocolError):
            StreamingMergeState().apply_payload(b"{not json")

    def test_invalid_encoding(self):
        with pytest.raises(ProtocolError):
            StreamingMergeState().apply_payload(b"\xff\xfe")


# ---------------------------------------------------------------------------
# PULL INTERFACE
# ---------------------------------------------------------------------------


class TestStreamingChatCompletion:
    """Test next(), iteration and close()."""

    def test_satisfies_protocol(self):
        assert isinstance(open_stream(), CompletionStream)

    def test_merge_sequence(self):
        """Three content-bearing events, then [DONE]: three snapshots then None forever."""
        stream = open_stream(
            event({"role": "assistant"}),
            event({"content": "Hello"}),
            event({"content": ", world"}),
            DONE,
        )

        first = stream.next()
        assert first.message.role == Role.ASSISTANT
        assert first.content == ""
        assert stream.next().content == "Hello"
        assert stream.next().content == "Hello, world"
        assert stream.next() is None
        assert stream.next() is None
        assert stream.done

    def test_snapshots_are_independent(self):
        stream = open_stream(event({"content": "a"}), event({"content": "b"}))

        first = stream.next()
        stream.next()

        assert first.content == "a"

    def test_finish_reason_recorded(self):
        stream = open_stream(
            event({"role": "assistant", "content": "Hi"}),
            event({}, finish_reason="stop"),
            DONE,
        )

        responses = list(stream)

        assert len(responses) == 2
        assert responses[-1].choices[0].finish_reason == FinishReason.STOP

    def test_finish_reason_on_first_delta(self):
        """A single-chunk stream carries its finish_reason in the first snapshot."""
        stream = open_stream(
            event({"role": "assistant", "content": "Done."}, finish_reason="length"),
            DONE,
        )

        first = stream.next()

        assert first.content == "Done."
        assert first.choices[0].finish_reason == FinishReason.LENGTH
        assert stream.next() is None

    def test_events_split_across_chunks(self):
        raw = event({"role": "assistant"}) + event({"content": "Hi"}) + DONE
        chunks = [raw[i:i + 7] for i in range(0, len(raw), 7)]

        stream = StreamingChatCompletion(chunks)

        assert [r.content for r in stream] == ["", "Hi"]

    def test_iter_content(self):
        stream = open_stream(event({"content": "Head"}), event({"content": "ache"}), DONE)

        assert list(stream.iter_content()) == ["Head", "Headache"]

    def test_protocol_error_ends_stream(self):
        on_close = MagicMock()
        stream = StreamingChatCompletion(
            [event({"content": "a"}), b"data: {broken\n\n", event({"content": "b"})],
            on_close=on_close,
        )

        stream.next()
        with pytest.raises(ProtocolError):
            stream.next()

        assert stream.next() is None
        on_close.assert_called_once()

    def test_connection_failure_mid_stream(self):
        def chunks():
            yield event({"content": "a"})
            raise httpx.ReadError("connection reset")

        stream = StreamingChatCompletion(chunks())

        stream.next()
        with pytest.raises(TransportError):
            stream.next()
        assert stream.done

    def test_close_releases_once(self):
        on_close = MagicMock()
        stream = StreamingChatCompletion([event({"content": "a"}), DONE], on_close=on_close)
        stream.next()

        stream.close()
        stream.close()

        on_close.assert_called_once()
        assert stream.next() is None
        assert stream.response.choices == []

    def test_end_of_stream_releases(self):
        on_close = MagicMock()
        stream = StreamingChatCompletion([DONE], on_close=on_close)

        assert stream.next() is None
        on_close.assert_called_once()

    def test_dropped_stream_releases(self):
        on_close = MagicMock()
        stream = StreamingChatCompletion([event({"content": "a"}), DONE], on_close=on_close)
        stream.next()

        del stream
        gc.collect()

        on_close.assert_called_once()

    def test_context_manager_closes(self):
        on_close = MagicMock()

        with StreamingChatCompletion([event({"content": "a"})], on_close=on_close) as stream:
            stream.next()

        on_close.assert_called_once()


# ---------------------------------------------------------------------------
# CLIENT
# ---------------------------------------------------------------------------


class TestStreamingChatClient:
    """Test opening streams through the SDK."""

    def test_stream_request(self, client, openai_client, streaming_response, args):
        with client.stream(args) as stream:
            assert [r.content for r in stream] == ["", "Hello"]

        request = openai_client.chat.completions.with_streaming_response.create.call_args.kwargs
        assert request["stream"] is True
        assert request["model"] == "gpt-test"
        streaming_response.__exit__.assert_called_once()

    def test_open_retried_on_server_error(self, client, openai_client, streaming_response, args, sleep):
        create = openai_client.chat.completions.with_streaming_response.create
        create.side_effect = [status_error(503), status_error(500), streaming_response]

        stream = client.stream(args)

        assert create.call_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert stream.next().message.role == Role.ASSISTANT

    def test_open_failure(self, client, openai_client, args):
        openai_client.chat.completions.with_streaming_response.create.side_effect = status_error(404)

        with pytest.raises(TransportError) as exc_info:
            client.stream(args)

        assert exc_info.value.status_code == 404
        assert exc_info.value.attempts == 1

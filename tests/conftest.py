"""
Shared fixtures and builders for the unit tests.

Nothing here touches the network: SDK clients are MagicMocks, HTTP goes
through httpx.MockTransport, and sleep is recorded rather than waited.
"""

import io

import httpx
import numpy as np
import openai
import pytest
from unittest.mock import MagicMock

from clinical_assistant.chat.retry import RetryPolicy
from clinical_assistant.config import AssistantConfig, reset_config


# ---------------------------------------------------------------------------
# BUILDERS
# ---------------------------------------------------------------------------


def doc_id(n: int) -> bytes:
    """A 16-byte id made of one repeated byte, e.g. doc_id(1) == b'\\x01' * 16."""
    return bytes([n]) * 16


def hex_id(n: int) -> str:
    return doc_id(n).hex()


def npy_bytes(array, fortran: bool = False, dtype=np.float32) -> bytes:
    """Serialize `array` as .npy bytes."""
    array = np.asarray(array, dtype=dtype)
    if fortran:
        array = np.asfortranarray(array)
    buffer = io.BytesIO()
    np.save(buffer, array)
    return buffer.getvalue()


def status_error(status_code: int) -> openai.APIStatusError:
    """An SDK error as raised for an HTTP error status."""
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return openai.APIStatusError(f"HTTP {status_code}", response=response, body=None)


def completion(payload: dict) -> MagicMock:
    """Stand-in for an SDK ChatCompletion with the given JSON payload."""
    result = MagicMock()
    result.model_dump.return_value = payload
    return result


def function_completion(arguments: str, name: str = "output") -> MagicMock:
    return completion(
        {
            "choices": [
                {
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "function_call": {"name": name, "arguments": arguments},
                    },
                    "finish_reason": "stop",
                }
            ]
        }
    )


class RecordingSleep:
    """Sleep replacement that records delays."""

    def __init__(self):
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# FIXTURES
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_config():
    """Keep the global config singleton from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return AssistantConfig(api_key="test-key", chat_model="gpt-test", max_retries=3)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def retry_policy(sleep):
    return RetryPolicy(max_retries=3, backoff_base_seconds=1.0, sleep=sleep)


@pytest.fixture
def openai_client():
    """MagicMock standing in for openai.OpenAI."""
    return MagicMock()

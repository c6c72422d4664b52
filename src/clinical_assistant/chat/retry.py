"""
Retry with exponential backoff for requests to the OpenAI API.

Only server-class failures (HTTP 5xx) are retried. Anything else, including
client errors and connection failures, is terminal on the first attempt.

Delay before retry k (k starting at 0) is `backoff_base_seconds * 2**k`.
The sleep function is injected so tests can record delays instead of
waiting them out. Retries run sequentially inside the calling operation and
touch no shared state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import openai

from clinical_assistant.config import AssistantConfig
from clinical_assistant.core.exceptions import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        backoff_base_seconds: Delay before the first retry; doubles each time
        sleep: Blocking sleep used between attempts
    """

    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_config(cls, config: AssistantConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            backoff_base_seconds=config.backoff_base_seconds,
        )

    def delay(self, retry: int) -> float:
        """Backoff before retry number `retry` (0-based)."""
        return self.backoff_base_seconds * (2 ** retry)


def status_code_of(error: Exception) -> int | None:
    if isinstance(error, openai.APIStatusError):
        return error.status_code
    return None


def is_transient(error: Exception) -> bool:
    """Server-class failures are worth retrying."""
    status_code = status_code_of(error)
    return status_code is not None and status_code >= 500


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    operation_name: str = "request",
) -> T:
    """
    Execute `operation`, retrying transient API failures with backoff.

    Args:
        operation: Callable issuing one request (should take no arguments)
        policy: Retry configuration
        operation_name: Name for logging

    Returns:
        Whatever `operation` returns on the first successful attempt

    Raises:
        TransportError: On a non-transient failure or once retries run out
    """
    retry = 0
    while True:
        try:
            logger.debug(f"{operation_name}: attempt {retry + 1}/{policy.max_retries + 1}")
            result = operation()
        except openai.APIError as e:
            if is_transient(e) and retry < policy.max_retries:
                delay = policy.delay(retry)
                logger.warning(
                    f"{operation_name} failed on attempt {retry + 1}/{policy.max_retries + 1}: "
                    f"{e}; retrying in {delay:.2f}s"
                )
                policy.sleep(delay)
                retry += 1
                continue
            logger.error(f"{operation_name} failed after {retry + 1} attempts: {e}")
            raise TransportError(
                f"{operation_name} failed: {e}",
                status_code=status_code_of(e),
                attempts=retry + 1,
            ) from e

        if retry > 0:
            logger.info(f"{operation_name} succeeded after {retry + 1} attempts")
        return result

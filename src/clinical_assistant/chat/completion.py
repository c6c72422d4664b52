"""
Request/response chat completion, including schema-constrained output.

STRUCTURED OUTPUT:
------------------
`complete_function` forces the model to answer through a single declared
function whose parameters are the JSON schema of a Pydantic model, then
validates the returned arguments against that model. Models occasionally
emit arguments that don't match; when that happens the WHOLE call is
repeated (a new request), with the temperature raised to RETRY_TEMPERATURE
so the next sample has a chance to differ.

Two retry loops are in play and they are independent:
- call_with_retry: transport failures (HTTP 5xx) within one request
- complete_function: malformed structured output across requests
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from clinical_assistant.chat.messages import (
    ChatCompletionArgs,
    ChatCompletionResponse,
    FunctionSpec,
)
from clinical_assistant.chat.retry import RetryPolicy, call_with_retry
from clinical_assistant.config import AssistantConfig, get_config
from clinical_assistant.core.exceptions import EmptyResponseError, ProtocolError, SchemaError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

RETRY_TEMPERATURE = 0.5


def create_openai_client(config: AssistantConfig) -> OpenAI:
    """
    Build an SDK client for `config`.

    The SDK's own retries are disabled: RetryPolicy owns that decision.
    """
    return OpenAI(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        max_retries=0,
    )


@lru_cache(maxsize=None)
def function_spec_for(
    output_type: type[BaseModel],
    name: str,
    description: str | None = None,
) -> FunctionSpec:
    """Schema for `output_type`, generated once and reused for every call."""
    return FunctionSpec.for_model(output_type, name, description)


def to_response(completion: Any) -> ChatCompletionResponse:
    """Convert an SDK ChatCompletion into our response model."""
    try:
        return ChatCompletionResponse.model_validate(completion.model_dump())
    except ValidationError as e:
        raise ProtocolError(f"chat format error: {e}") from e


class ChatCompletionClient:
    """
    Chat completion over the OpenAI SDK.

    Dependencies are INJECTED, not created internally, so tests can pass a
    MagicMock SDK client and a RetryPolicy with a recording sleep.
    """

    def __init__(
        self,
        config: AssistantConfig | None = None,
        client: OpenAI | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        """
        Initialize with injected dependencies.

        Args:
            config: Client configuration (global config if not provided)
            client: OpenAI SDK client (built from config if not provided)
            retry_policy: Transport retry policy (built from config if not provided)
        """
        self.config = config or get_config()
        self._client = client or create_openai_client(self.config)
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)

    def complete(self, args: ChatCompletionArgs) -> ChatCompletionResponse:
        """Request a chat completion and wait for the full response."""
        request = args.to_request(stream=False, default_model=self.config.chat_model)
        completion = call_with_retry(
            lambda: self._client.chat.completions.create(**request),
            self.retry_policy,
            operation_name="chat completion",
        )
        return to_response(completion)

    def complete_function(
        self,
        args: ChatCompletionArgs,
        output_type: type[T],
        name: str,
        description: str | None = None,
        max_retries: int | None = None,
    ) -> T:
        """
        Request a chat completion whose output is an instance of `output_type`.

        Args:
            args: Conversation and sampling settings; any functions are replaced
            output_type: Pydantic model the answer must validate against
            name: Function name the model is forced to call
            description: Optional function description shown to the model
            max_retries: Whole-call retries on malformed output (policy default if None)

        Raises:
            EmptyResponseError: No choices, or no function call in the answer
            SchemaError: Output never validated
            TransportError: From the underlying request
        """
        spec = function_spec_for(output_type, name, description)
        max_retries = self.retry_policy.max_retries if max_retries is None else max_retries
        base_args = args.with_no_functions().with_function(spec).with_function_call(name)

        retry = 0
        while True:
            call_args = base_args.with_temperature(RETRY_TEMPERATURE) if retry > 0 else base_args
            response = self.complete(call_args)

            if not response.choices:
                raise EmptyResponseError("chat completion returned no messages")
            function_call = response.choices[0].message.function_call
            if function_call is None:
                raise EmptyResponseError("failed to get chat completion function output")

            try:
                return output_type.model_validate_json(function_call.arguments)
            except ValidationError as e:
                if retry < max_retries:
                    retry += 1
                    logger.warning(
                        f"{name} output failed validation, retrying "
                        f"({retry}/{max_retries}) at temperature {RETRY_TEMPERATURE}"
                    )
                    continue
                logger.error(f"{name} output failed validation after {retry + 1} attempts")
                raise SchemaError(
                    f"chat function format error: {e}", attempts=retry + 1
                ) from e

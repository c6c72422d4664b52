"""
Assistant Configuration

Loads client and corpus settings from environment variables.
"""

import os
from dataclasses import dataclass

_TRUE_VALUES = ("true", "1", "yes")


@dataclass
class AssistantConfig:
    """Configuration for the completion clients, embeddings and document fetch.

    Environment Variables:
        OPENAI_API_KEY: API key for chat and embedding requests
        OPENAI_BASE_URL: Override the API endpoint (optional, SDK default if empty)
        CHAT_MODEL: Model id for chat completions (default: gpt-4o-mini)
        EMBEDDING_MODEL: Model id for embeddings (default: text-embedding-ada-002)
        CHAT_MAX_RETRIES: Retries after a server-class failure (default: 3)
        CHAT_BACKOFF_BASE_SECONDS: Base of the exponential backoff (default: 1.0)
        CHAT_TIMEOUT_SECONDS: Per-request timeout (default: 60)
        DOCUMENT_ORIGIN: Origin serving /db/documents/... (default: empty)
        USE_MOCK_EMBEDDINGS: Use deterministic mock embeddings (default: false)

    The embedding model must match the one the corpus was embedded with,
    otherwise similarity scores are meaningless.
    """

    api_key: str | None = None
    base_url: str | None = None
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-ada-002"
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    timeout_seconds: float = 60.0
    document_origin: str = ""
    use_mock_embeddings: bool = False

    @classmethod
    def from_env(cls) -> "AssistantConfig":
        """Load config from environment variables."""
        return cls(
            api_key=os.environ.get("OPENAI_API_KEY") or None,
            base_url=os.environ.get("OPENAI_BASE_URL") or None,
            chat_model=os.environ.get("CHAT_MODEL", "gpt-4o-mini"),
            embedding_model=os.environ.get("EMBEDDING_MODEL", "text-embedding-ada-002"),
            max_retries=int(os.environ.get("CHAT_MAX_RETRIES", "3")),
            backoff_base_seconds=float(os.environ.get("CHAT_BACKOFF_BASE_SECONDS", "1.0")),
            timeout_seconds=float(os.environ.get("CHAT_TIMEOUT_SECONDS", "60")),
            document_origin=os.environ.get("DOCUMENT_ORIGIN", "").rstrip("/"),
            use_mock_embeddings=os.environ.get("USE_MOCK_EMBEDDINGS", "false").lower() in _TRUE_VALUES,
        )


# Global config singleton
_config: AssistantConfig | None = None


def get_config() -> AssistantConfig:
    """Get the global assistant config (lazy-loaded from env)."""
    global _config
    if _config is None:
        _config = AssistantConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (useful for testing)."""
    global _config
    _config = None

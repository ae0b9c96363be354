"""Embedding generator — LiteLLM embeddings with retry and token accounting."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import litellm

from docembed.config import EmbeddingCfg
from docembed.ingest.errors import EmbeddingProviderError
from docembed.ingest.retry import RetryPolicy, retry_with_backoff
from docembed.ingest.tokens import CharsPerTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)

_PROVIDER_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}


@dataclass
class EmbeddingResult:
    embedding: list[float]
    token_count: int


class EmbeddingGenerator:
    """Embed text chunks with ``litellm.embedding()``.

    Transient provider failures (rate limits, timeouts) are retried with
    exponential backoff; once retries run out ``EmbeddingProviderError`` is
    raised for the caller to record against the chunk.

    Args:
        config:    Embedding configuration (model, dimensions, retry schedule).
        estimator: Fallback token counter when the provider reports no usage.
        policy:    Override the retry policy derived from *config*.
    """

    def __init__(
        self,
        config: EmbeddingCfg | None = None,
        estimator: TokenEstimator | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._config = config or EmbeddingCfg()
        self._estimator = estimator or CharsPerTokenEstimator()
        self._policy = policy or RetryPolicy.from_config(self._config)

    @property
    def model(self) -> str:
        return self._config.model

    def embed(self, text: str) -> EmbeddingResult:
        """Return the embedding and token cost of *text*.

        Raises:
            EmbeddingProviderError: If every attempt failed.
        """
        result = retry_with_backoff(lambda: self._call(text), self._policy)
        if not result.ok:
            raise EmbeddingProviderError(
                f"Embedding failed after {result.attempts} attempts: {result.error}",
                attempts=result.attempts,
            ) from result.error

        response = result.value
        embedding = list(response.data[0]["embedding"])
        usage = getattr(response, "usage", None)
        total = getattr(usage, "total_tokens", None) if usage is not None else None
        token_count = int(total) if total else self._estimator.count(text)
        return EmbeddingResult(embedding=embedding, token_count=token_count)

    def check_api_key(self) -> None:
        """Raise EnvironmentError if no API key is set for the model's provider."""
        provider = self._config.model.split("/")[0].lower() if "/" in self._config.model else ""
        required_env = _PROVIDER_ENV.get(provider)
        if required_env and not os.environ.get(required_env):
            raise EnvironmentError(
                f"No API key found for provider '{provider}'. "
                f"Set the {required_env} environment variable."
            )

    def _call(self, text: str):
        return litellm.embedding(model=self._config.model, input=[text])

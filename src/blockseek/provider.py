"""Embedding provider interface and Gemini implementation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from google import genai
from google.genai import types

from blockseek import config

logger = logging.getLogger(__name__)


@dataclass
class EmbedResult:
    vector: list[float]
    token_count: int = 0


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""

    def embed(self, text: str) -> EmbedResult:
        """Embed one text, returning its vector and token usage."""
        ...


class GeminiProvider:
    """Gemini implementation of the embedding provider.

    The API client is created on the first ``embed`` call, so a provider can
    be built without credentials when only stored vectors are queried.
    """

    def __init__(
        self,
        api_key: str | None = None,
        embedding_model: str | None = None,
        embedding_dims: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self._api_key = api_key or config.GEMINI_API_KEY
        self._timeout = timeout if timeout is not None else config.EMBED_TIMEOUT
        self._embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._embedding_dims = embedding_dims or config.EMBEDDING_DIMS
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                api_key=self._api_key,
                # HttpOptions.timeout is in milliseconds
                http_options=types.HttpOptions(timeout=int(self._timeout * 1000)),
            )
        return self._client

    def embed(self, text: str) -> EmbedResult:
        """Embed a single block of text using the Gemini embedding API."""
        logger.debug("Embedding %d chars via %s", len(text), self._embedding_model)
        t0 = time.perf_counter()
        result = self._get_client().models.embed_content(
            model=self._embedding_model,
            contents=text,
            config=types.EmbedContentConfig(
                output_dimensionality=self._embedding_dims,
            ),
        )
        embedding = result.embeddings[0]
        # Token statistics are only reported by some backends (Vertex AI)
        stats = embedding.statistics
        tokens = int(stats.token_count or 0) if stats is not None else 0
        logger.debug("Embed complete: %d tokens, %.0fms", tokens, (time.perf_counter() - t0) * 1000)
        return EmbedResult(vector=list(embedding.values), token_count=tokens)

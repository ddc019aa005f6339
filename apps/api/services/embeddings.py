"""
Embedding providers for Brain fragments and queries.

OpenAI `text-embedding-3-small` is used when an API key is configured. Without
one, a deterministic local hashing embedder keeps indexing and search usable
in development and tests.
"""

from __future__ import annotations

import hashlib
import logging
import re
from functools import lru_cache
from typing import List, Optional

import numpy as np
import openai
from openai import AsyncOpenAI

from config import require_openai_api_key, settings
from services.brain_errors import PermanentServiceError, UpstreamServiceError, ValidationError
from services.retry_policy import RetryPolicy, embedding_retry_policy

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


class EmbeddingProvider:
    """Interface: ``await embed(text) -> list[float]``."""

    model_name: str = "unknown"
    dimensions: int = 0

    async def embed(self, text: str) -> List[float]:
        raise NotImplementedError


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API wrapped in the shared retry policy."""

    def __init__(
        self,
        api_key: str,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.dimensions = int(dimensions or settings.EMBEDDING_DIMENSIONS)
        self.retry_policy = retry_policy or embedding_retry_policy()
        # SDK retries are disabled; the retry policy owns backoff.
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)

    async def _create(self, text: str) -> List[float]:
        try:
            response = await self._client.embeddings.create(model=self.model_name, input=text)
        except (openai.AuthenticationError, openai.PermissionDeniedError, openai.BadRequestError) as exc:
            raise PermanentServiceError(str(exc), status_code=getattr(exc, "status_code", None)) from exc
        vector = list(response.data[0].embedding)
        if not vector:
            raise PermanentServiceError("Embedding response was empty.")
        return vector

    async def embed(self, text: str) -> List[float]:
        cleaned = str(text or "").strip()
        if not cleaned:
            raise ValidationError("Cannot embed empty text.")
        return await self.retry_policy.call(lambda: self._create(cleaned), operation="embed")


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-tokens embedder (signed feature hashing, L2-normalized)."""

    model_name = "local-hashing-v1"

    def __init__(self, dimensions: Optional[int] = None):
        self.dimensions = int(dimensions or settings.LOCAL_EMBEDDING_DIMENSIONS)

    def _vectorize(self, text: str) -> List[float]:
        vector = np.zeros(self.dimensions, dtype=np.float64)
        tokens = _TOKEN_PATTERN.findall(text.lower())
        for token in tokens:
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()

    async def embed(self, text: str) -> List[float]:
        cleaned = str(text or "").strip()
        if not cleaned:
            raise ValidationError("Cannot embed empty text.")
        return self._vectorize(cleaned)


@lru_cache(maxsize=1)
def _default_provider() -> EmbeddingProvider:
    try:
        api_key = require_openai_api_key()
    except ValueError:
        logger.warning("OPENAI_API_KEY missing; using local hashing embeddings.")
        return HashingEmbeddingProvider()
    return OpenAIEmbeddingProvider(api_key=api_key)


def get_embedding_provider() -> EmbeddingProvider:
    """FastAPI dependency returning the process-wide embedding provider."""
    return _default_provider()


def ensure_embedding(vector: List[float], provider: EmbeddingProvider) -> List[float]:
    """Reject non-finite or empty vectors before they reach the store."""
    array = np.asarray(vector, dtype=np.float64)
    if array.ndim != 1 or array.size == 0 or not np.all(np.isfinite(array)):
        raise UpstreamServiceError(
            f"{provider.model_name} returned an invalid embedding.",
            retryable=False,
        )
    return array.tolist()

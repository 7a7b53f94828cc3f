from __future__ import annotations

"""
Query embeddings for the vector adapter (Voyage AI, multilingual).

The embedder is optional: without an API key `available` is False and the
vector adapter is skipped. Any provider failure surfaces as EmbeddingError.
"""

from typing import List, Optional

import httpx
import numpy as np
from loguru import logger

from . import config


class EmbeddingError(RuntimeError):
    """The embedding provider failed or returned an unusable vector."""


class VoyageEmbedder:
    def __init__(
        self,
        api_key: str = config.VOYAGE_API_KEY,
        model: str = config.VOYAGE_MODEL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.EMBEDDING_TIMEOUT, connect=config.HTTP_CONNECT_TIMEOUT),
        )

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def embed(self, text: str) -> List[float]:
        """Embed one query string; returns an L2-normalised float vector."""
        if not self.available:
            raise EmbeddingError("VOYAGE_API_KEY is not set")
        try:
            r = await self._client.post(
                config.VOYAGE_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"input": [text], "model": self.model, "input_type": "query"},
            )
        except httpx.HTTPError as e:
            raise EmbeddingError(f"voyage request failed: {e}") from e
        if r.status_code >= 400:
            raise EmbeddingError(f"voyage HTTP {r.status_code}")

        try:
            vec = np.asarray(r.json()["data"][0]["embedding"], dtype=np.float32)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingError("voyage response has no usable embedding") from e

        if vec.ndim != 1 or vec.size == 0 or not np.all(np.isfinite(vec)):
            raise EmbeddingError("voyage returned a malformed vector")
        norm = float(np.linalg.norm(vec))
        if norm > 0:
            vec = vec / norm
        logger.debug("embedding: dim={} model={}", vec.size, self.model)
        return vec.tolist()

import time

import httpx
import numpy as np
from loguru import logger
from numpy.typing import NDArray

from codeqa.core.errors import ConfigurationError, TransientServiceError
from codeqa.infrastructure.http import bearer, post_json


class RemoteEmbedder:
    """
    Concrete implementation of IEmbedder backed by an OpenAI-compatible
    /embeddings endpoint. Inputs are truncated to max_chars, sent in fixed-size
    batches with a short pause between them, and any provider error fails the
    whole call so the indexer can fall back.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        batch_size: int = 100,
        max_chars: int = 8000,
        batch_delay: float = 0.1,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Embedding API key is not configured.")

        self._api_key = api_key
        self._model = model
        self._batch_size = batch_size
        self._max_chars = max_chars
        self._batch_delay = batch_delay
        self._dimension = 0
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    @property
    def dimension(self) -> int:
        """Learned from the first response; 0 until then."""
        return self._dimension

    @property
    def scheme(self) -> str:
        return f"remote:{self._model}"

    def _request(self, texts: list[str]) -> list[list[float]]:
        payload = post_json(
            self._client,
            "/embeddings",
            {"model": self._model, "input": texts},
            service="embedding",
            headers=bearer(self._api_key),
        )
        data = payload.get("data")
        if not isinstance(data, list) or len(data) != len(texts):
            raise TransientServiceError(
                "embedding", f"expected {len(texts)} embeddings in response"
            )
        try:
            ordered = sorted(data, key=lambda item: item.get("index", 0))
            return [item["embedding"] for item in ordered]
        except (AttributeError, KeyError, TypeError) as e:
            raise TransientServiceError("embedding", f"malformed embedding entry: {e}") from e

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]:
        if not texts:
            return np.empty((0, self._dimension), dtype=np.float32)

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            if start > 0:
                # Stay under provider rate limits
                time.sleep(self._batch_delay)
            batch = [text[: self._max_chars] for text in texts[start : start + self._batch_size]]
            vectors.extend(self._request(batch))
            logger.debug("Embedded {}/{} texts", min(start + self._batch_size, len(texts)), len(texts))

        try:
            matrix = np.asarray(vectors, dtype=np.float32)
        except ValueError as e:
            raise TransientServiceError("embedding", "embeddings have inconsistent dimensions") from e
        if matrix.ndim != 2:
            raise TransientServiceError("embedding", "embeddings have inconsistent dimensions")
        self._dimension = matrix.shape[1]
        return matrix

    def embed(self, text: str) -> NDArray[np.float32]:
        if not text.strip():
            raise ValueError("Text to embed cannot be empty.")
        return self.embed_batch([text])[0]

    def close(self) -> None:
        self._client.close()

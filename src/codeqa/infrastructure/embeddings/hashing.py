import math
from collections import Counter

import numpy as np
from numpy.typing import NDArray

from codeqa.infrastructure.search.keyword import tokenize

_INT32_WRAP = 2**32
_INT32_MIN = 2**31


def string_hash(term: str) -> int:
    """Stable signed 32-bit string hash (h = h * 31 + c)."""
    h = 0
    for char in term:
        h = (h << 5) - h + ord(char)
        h = (h + _INT32_MIN) % _INT32_WRAP - _INT32_MIN
    return h


class HashingEmbedder:
    """
    Local, network-free embedder using the feature-hashing trick.
    Each term adds frequency * ln(len + 1) to one hashed dimension; the result is
    L2-normalized. Identical text always yields a bit-identical vector.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ValueError("Embedding dimension must be positive.")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def scheme(self) -> str:
        return f"local-hash:{self._dimension}"

    def embed(self, text: str) -> NDArray[np.float32]:
        vector = np.zeros(self._dimension, dtype=np.float64)
        for term, frequency in Counter(tokenize(text)).items():
            position = abs(string_hash(term)) % self._dimension
            vector[position] += frequency * math.log(len(term) + 1)

        magnitude = np.linalg.norm(vector)
        if magnitude > 0:
            vector /= magnitude
        return vector.astype(np.float32)

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]:
        if not texts:
            return np.empty((0, self._dimension), dtype=np.float32)
        return np.vstack([self.embed(text) for text in texts])

    def close(self) -> None:
        """Nothing to release."""

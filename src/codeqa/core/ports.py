from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from codeqa.core.models import Chunk, CodeGraph, SearchResult, VectorDocument


class IEmbedder(Protocol):
    """Protocol defining how an embedder should behave."""

    @property
    def dimension(self) -> int:
        """Returns the embedding vector dimension size."""
        ...

    @property
    def scheme(self) -> str:
        """Identifies the embedding space; vectors from different schemes never mix."""
        ...

    def embed(self, text: str) -> NDArray[np.float32]:
        """Converts a single string into a flat float32 NumPy array."""
        ...

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]:
        """Converts a batch of strings into a (n, dimension) float32 array, order preserved."""
        ...


class IVectorStore(Protocol):
    """Protocol defining how a vector store behaves."""

    @property
    def embedding_scheme(self) -> str: ...

    @property
    def indexed_at(self) -> datetime | None: ...

    def count(self) -> int: ...

    def upsert(self, documents: Sequence[VectorDocument]) -> None:
        """Inserts documents, overwriting any existing document with the same id."""
        ...

    def delete(self, ids: Sequence[str]) -> None: ...

    def clear(self) -> None: ...

    def search(self, query_embedding: NDArray[np.float32], k: int = 5) -> list[SearchResult]:
        """Returns at most k documents by descending cosine similarity."""
        ...


class IVectorBackend(Protocol):
    """Creates, persists and restores vector stores for one storage technology."""

    def create(self, embedding_scheme: str, dimension: int, indexed_at: datetime) -> IVectorStore:
        ...

    def persist(self, store: IVectorStore) -> None: ...

    def load(self, accepted_schemes: Collection[str]) -> IVectorStore | None:
        """Restores the persisted store, or None when missing, unreadable or stale."""
        ...

    def retire(self, store: IVectorStore) -> None:
        """Releases storage held by a store that has been swapped out."""
        ...

    def clear(self) -> None: ...


class IRerankClient(Protocol):
    """Remote relevance scorer."""

    def rerank(self, query: str, documents: list[str], top_n: int) -> list[tuple[int, float]]:
        """Returns (document index, relevance score) pairs, most relevant first."""
        ...

    def close(self) -> None: ...


class ICompletionClient(Protocol):
    """Remote language model."""

    def complete(self, system_prompt: str, user_prompt: str) -> str: ...

    def close(self) -> None: ...


class IChunker(Protocol):
    """Protocol defining how a code graph is split into chunks."""

    def chunk(self, graph: CodeGraph) -> list[Chunk]: ...

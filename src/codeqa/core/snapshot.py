import threading
from dataclasses import dataclass, field
from datetime import datetime

from codeqa.core.ports import IEmbedder, IVectorStore
from codeqa.infrastructure.search.keyword import KeywordIndex


@dataclass(frozen=True)
class IndexSnapshot:
    """
    Everything a query needs, published as one immutable unit. The embedder is
    the one the vectors were built with, so queries always land in the same
    embedding space as the stored documents.
    """

    keyword_index: KeywordIndex = field(default_factory=KeywordIndex)
    vector_store: IVectorStore | None = None
    embedder: IEmbedder | None = None
    indexed_at: datetime | None = None

    @property
    def embedding_scheme(self) -> str | None:
        return self.vector_store.embedding_scheme if self.vector_store is not None else None

    @property
    def has_vectors(self) -> bool:
        return self.vector_store is not None and self.embedder is not None


class SnapshotHolder:
    """Holds the live snapshot. Readers take a reference; writers swap the whole thing."""

    def __init__(self, snapshot: IndexSnapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._current = snapshot or IndexSnapshot()

    @property
    def current(self) -> IndexSnapshot:
        return self._current

    def swap(self, snapshot: IndexSnapshot) -> IndexSnapshot:
        """Publishes snapshot and returns the one it replaced."""
        with self._lock:
            previous, self._current = self._current, snapshot
        return previous

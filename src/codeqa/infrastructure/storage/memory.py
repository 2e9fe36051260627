from collections.abc import Collection, Sequence
from datetime import datetime
from pathlib import Path

import numpy as np
from loguru import logger
from numpy.typing import NDArray
from pydantic import ValidationError

from codeqa.config import Settings
from codeqa.core.errors import DataError
from codeqa.core.models import SearchResult, VectorDocument, VectorSnapshot


def cosine_similarity(a: NDArray[np.floating], b: NDArray[np.floating]) -> float:
    """Cosine of the angle between a and b; 0 for zero-magnitude or mismatched vectors."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        return 0.0
    magnitude = np.linalg.norm(a) * np.linalg.norm(b)
    if magnitude == 0:
        return 0.0
    return float(np.dot(a, b) / magnitude)


class InMemoryVectorStore:
    """
    Brute-force cosine search over a dict of documents keyed by id.
    The dense matrix used for scoring is rebuilt lazily after writes.
    """

    def __init__(self, embedding_scheme: str, indexed_at: datetime | None = None) -> None:
        self._embedding_scheme = embedding_scheme
        self._indexed_at = indexed_at
        self._documents: dict[str, VectorDocument] = {}
        # (ids, matrix) built on first search after a write, replaced as one tuple
        self._dense: tuple[list[str], NDArray[np.float64]] | None = None

    @property
    def embedding_scheme(self) -> str:
        return self._embedding_scheme

    @property
    def indexed_at(self) -> datetime | None:
        return self._indexed_at

    def count(self) -> int:
        return len(self._documents)

    def documents(self) -> list[VectorDocument]:
        return list(self._documents.values())

    def upsert(self, documents: Sequence[VectorDocument]) -> None:
        dimension = self._dimension()
        for doc in documents:
            if dimension is None:
                dimension = len(doc.embedding)
            elif len(doc.embedding) != dimension:
                raise ValueError(
                    f"Document '{doc.id}' has dimension {len(doc.embedding)}, store holds {dimension}"
                )
            self._documents[doc.id] = doc
        self._dense = None

    def delete(self, ids: Sequence[str]) -> None:
        for doc_id in ids:
            self._documents.pop(doc_id, None)
        self._dense = None

    def clear(self) -> None:
        self._documents.clear()
        self._dense = None

    def _dimension(self) -> int | None:
        first = next(iter(self._documents.values()), None)
        return len(first.embedding) if first is not None else None

    def _ensure_dense(self) -> tuple[list[str], NDArray[np.float64]]:
        dense = self._dense
        if dense is None:
            ids = list(self._documents)
            matrix = np.asarray([self._documents[i].embedding for i in ids], dtype=np.float64)
            dense = self._dense = (ids, matrix)
        return dense

    def search(self, query_embedding: NDArray[np.float32], k: int = 5) -> list[SearchResult]:
        if not self._documents or k <= 0:
            return []

        ids, matrix = self._ensure_dense()
        query = np.asarray(query_embedding, dtype=np.float64).ravel()
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match store dimension {matrix.shape[1]}"
            )

        magnitudes = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, magnitudes, out=np.zeros_like(dots), where=magnitudes > 0)

        top = np.argsort(-scores, kind="stable")[:k]
        results = []
        for i in top:
            doc = self._documents[ids[i]]
            results.append(
                SearchResult(
                    id=doc.id, content=doc.content, metadata=doc.metadata, score=float(scores[i])
                )
            )
        return results

    def snapshot(self) -> VectorSnapshot:
        return VectorSnapshot(
            documents=self.documents(),
            indexed_at=self._indexed_at,
            embedding_scheme=self._embedding_scheme,
        )

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.snapshot().model_dump_json(by_alias=True, exclude_none=True))
        logger.info("Saved {} vectors to {}", self.count(), path)


def read_snapshot(path: Path) -> VectorSnapshot:
    """Parses a persisted snapshot, raising DataError when it is malformed."""
    try:
        snapshot = VectorSnapshot.model_validate_json(path.read_bytes())
    except ValidationError as e:
        raise DataError(f"Vector snapshot {path} is malformed: {e}") from e

    dimensions = {len(doc.embedding) for doc in snapshot.documents}
    if len(dimensions) > 1:
        raise DataError(
            f"Vector snapshot {path} is malformed: mixed embedding dimensions {sorted(dimensions)}"
        )
    return snapshot


class InMemoryStoreBackend:
    """Keeps vectors in memory and persists them as a single JSON snapshot file."""

    SNAPSHOT_FILE = "vectors.json"

    def __init__(self, data_dir: str | Path) -> None:
        self.snapshot_path = Path(data_dir) / self.SNAPSHOT_FILE

    @classmethod
    def from_settings(cls, settings: Settings) -> "InMemoryStoreBackend":
        return cls(settings.data_dir)

    def create(
        self, embedding_scheme: str, dimension: int, indexed_at: datetime
    ) -> InMemoryVectorStore:
        return InMemoryVectorStore(embedding_scheme, indexed_at=indexed_at)

    def persist(self, store: InMemoryVectorStore) -> None:
        store.save(self.snapshot_path)

    def load(self, accepted_schemes: Collection[str]) -> InMemoryVectorStore | None:
        if not self.snapshot_path.exists():
            return None

        try:
            snapshot = read_snapshot(self.snapshot_path)
        except DataError as e:
            logger.error("{}; re-index required", e)
            return None

        if snapshot.embedding_scheme not in accepted_schemes:
            logger.warning(
                "Vector snapshot was built with '{}', which is not available now; re-index required",
                snapshot.embedding_scheme,
            )
            return None

        store = InMemoryVectorStore(snapshot.embedding_scheme, indexed_at=snapshot.indexed_at)
        store.upsert(snapshot.documents)
        logger.info("Loaded {} vectors from {}", store.count(), self.snapshot_path)
        return store

    def retire(self, store: InMemoryVectorStore) -> None:
        """The replaced store is garbage collected once readers drop it."""

    def clear(self) -> None:
        self.snapshot_path.unlink(missing_ok=True)

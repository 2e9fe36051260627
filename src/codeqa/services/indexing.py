import threading
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from codeqa.core.errors import CodeQAError, IndexingInProgressError
from codeqa.core.models import Chunk, CodeGraph, IndexReport, VectorDocument
from codeqa.core.ports import IChunker, IEmbedder, IVectorBackend, IVectorStore
from codeqa.core.snapshot import IndexSnapshot, SnapshotHolder
from codeqa.infrastructure.search.keyword import KeywordIndex


class IndexingService:
    """
    Orchestrates a wholesale indexing pass: chunk, build the keyword index,
    embed, write a fresh vector store, then publish everything as one snapshot.

    The primary embedder is tried first. If it fails the whole pass is
    re-embedded with the fallback embedder; if that fails too, or the vector
    backend cannot be written, the pass completes with the keyword index only.
    """

    KEYWORD_FILE = "search.json"

    def __init__(
        self,
        chunker: IChunker,
        snapshots: SnapshotHolder,
        backend: IVectorBackend,
        data_dir: str | Path,
        embedder: IEmbedder | None = None,
        fallback_embedder: IEmbedder | None = None,
    ) -> None:
        self.chunker = chunker
        self.snapshots = snapshots
        self.backend = backend
        self.keyword_path = Path(data_dir) / self.KEYWORD_FILE
        self.embedder = embedder
        self.fallback_embedder = fallback_embedder
        self._lock = threading.Lock()

    @property
    def is_indexing(self) -> bool:
        return self._lock.locked()

    def index_graph(self, graph: CodeGraph) -> IndexReport:
        """Chunks an analyzer graph and indexes the result."""
        chunks = self.chunker.chunk(graph)
        logger.info("Chunked {} nodes into {} chunks", len(graph.nodes), len(chunks))
        return self.index(chunks)

    def index(self, chunks: list[Chunk]) -> IndexReport:
        if not self._lock.acquire(blocking=False):
            raise IndexingInProgressError("An indexing pass is already running.")
        try:
            return self._run(chunks)
        finally:
            self._lock.release()

    def _run(self, chunks: list[Chunk]) -> IndexReport:
        indexed_at = datetime.now(timezone.utc)
        logger.info("Starting indexing pass over {} chunks", len(chunks))

        keyword_index = KeywordIndex()
        keyword_index.index(chunks)
        keyword_index.save(self.keyword_path)

        store: IVectorStore | None = None
        embedder: IEmbedder | None = None
        if chunks and (self.embedder or self.fallback_embedder):
            store, embedder = self._build_vectors(chunks, indexed_at)
        if store is None:
            # Vectors persisted by an earlier pass no longer match the corpus
            self.backend.clear()

        previous = self.snapshots.swap(
            IndexSnapshot(
                keyword_index=keyword_index,
                vector_store=store,
                embedder=embedder,
                indexed_at=indexed_at,
            )
        )
        if previous.vector_store is not None and previous.vector_store is not store:
            self.backend.retire(previous.vector_store)

        report = IndexReport(
            chunks=len(chunks),
            vector_documents=store.count() if store is not None else 0,
            embedding_scheme=store.embedding_scheme if store is not None else None,
            indexed_at=indexed_at,
        )
        logger.info(
            "Indexing complete: {} chunks, {} vectors ({})",
            report.chunks,
            report.vector_documents,
            report.embedding_scheme or "keyword only",
        )
        return report

    def _build_vectors(
        self, chunks: list[Chunk], indexed_at: datetime
    ) -> tuple[IVectorStore | None, IEmbedder | None]:
        texts = [f"{c.metadata.name} {c.metadata.type}\n{c.content}" for c in chunks]

        for embedder in (self.embedder, self.fallback_embedder):
            if embedder is None:
                continue
            try:
                vectors = embedder.embed_batch(texts)
            except CodeQAError as e:
                logger.warning("Embedding with '{}' failed: {}", embedder.scheme, e)
                continue

            documents = [
                VectorDocument(
                    id=chunk.id,
                    content=chunk.content,
                    embedding=vector.tolist(),
                    metadata=chunk.metadata,
                )
                for chunk, vector in zip(chunks, vectors, strict=True)
            ]
            store: IVectorStore | None = None
            try:
                store = self.backend.create(embedder.scheme, embedder.dimension, indexed_at)
                store.upsert(documents)
                self.backend.persist(store)
            except (OSError, ValueError, RuntimeError) as e:
                logger.warning("Vector store write failed, continuing keyword-only: {}", e)
                if store is not None:
                    self.backend.retire(store)
                return None, None
            return store, embedder

        logger.warning("No usable embedder; indexing keyword-only")
        return None, None

    def clear(self) -> None:
        """Drops the live snapshot and every persisted artifact."""
        if not self._lock.acquire(blocking=False):
            raise IndexingInProgressError("Cannot clear while an indexing pass is running.")
        try:
            previous = self.snapshots.swap(IndexSnapshot())
            if previous.vector_store is not None:
                self.backend.retire(previous.vector_store)
            self.backend.clear()
            self.keyword_path.unlink(missing_ok=True)
            logger.info("Cleared index artifacts")
        finally:
            self._lock.release()

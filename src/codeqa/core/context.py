from pathlib import Path
from types import TracebackType
from typing import Any

from loguru import logger

from codeqa.config import Settings
from codeqa.core.errors import ConfigurationError
from codeqa.core.models import (
    AnswerResult,
    Capabilities,
    Chunk,
    CodeGraph,
    IndexReport,
    IndexStats,
    SearchOutcome,
    SearchResult,
)
from codeqa.core.ports import ICompletionClient, IEmbedder, IRerankClient, IVectorBackend
from codeqa.core.registry import ComponentRegistry
from codeqa.core.snapshot import IndexSnapshot, SnapshotHolder
from codeqa.infrastructure.chunking.graph import CodeGraphChunker
from codeqa.infrastructure.llm.chat import ChatCompletionClient
from codeqa.infrastructure.reranking.cohere import CohereRerankClient
from codeqa.infrastructure.search.keyword import KeywordIndex
from codeqa.services.answer import AnswerSynthesizer
from codeqa.services.indexing import IndexingService
from codeqa.services.reranker import Reranker
from codeqa.services.retriever import Retriever


class RetrievalContext:
    """
    Owns one project's index and the pipeline built on top of it. Hosts create
    it with build_context(), use it for the life of the session, and close it.
    """

    def __init__(
        self,
        settings: Settings,
        backend: IVectorBackend,
        embedder: IEmbedder | None = None,
        fallback_embedder: IEmbedder | None = None,
        rerank_client: IRerankClient | None = None,
        llm: ICompletionClient | None = None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.embedder = embedder
        self.fallback_embedder = fallback_embedder

        self.snapshots = SnapshotHolder()
        self.chunker = CodeGraphChunker()
        self.retriever = Retriever(self.snapshots)
        self.reranker = Reranker(rerank_client)
        self.synthesizer = AnswerSynthesizer(
            self.retriever,
            self.reranker,
            llm=llm,
            candidates=settings.answer_candidates,
            top_k=settings.rerank_top_k,
        )
        self.indexer = IndexingService(
            self.chunker,
            self.snapshots,
            backend,
            settings.data_dir,
            embedder=embedder,
            fallback_embedder=fallback_embedder,
        )

    def load(self) -> None:
        """Restores the persisted keyword index and vectors, if any."""
        keyword_index = KeywordIndex.load(Path(self.settings.data_dir) / IndexingService.KEYWORD_FILE)

        by_scheme = {e.scheme: e for e in (self.embedder, self.fallback_embedder) if e is not None}
        store = self.backend.load(by_scheme.keys()) if by_scheme else None

        self.snapshots.swap(
            IndexSnapshot(
                keyword_index=keyword_index,
                vector_store=store,
                embedder=by_scheme.get(store.embedding_scheme) if store is not None else None,
                indexed_at=store.indexed_at if store is not None else None,
            )
        )
        logger.info(
            "Loaded index: {} documents, {} vectors",
            len(keyword_index),
            store.count() if store is not None else 0,
        )

    def index(self, chunks: list[Chunk]) -> IndexReport:
        return self.indexer.index(chunks)

    def index_graph(self, graph: CodeGraph) -> IndexReport:
        return self.indexer.index_graph(graph)

    def search(self, query: str, top_k: int | None = None) -> list[SearchResult]:
        return self.retriever.search(query, top_k or self.settings.search_top_k)

    def search_with_path(self, query: str, top_k: int | None = None) -> SearchOutcome:
        return self.retriever.search_with_path(query, top_k or self.settings.search_top_k)

    def answer(self, question: str) -> AnswerResult:
        return self.synthesizer.answer(question)

    def get_document(self, doc_id: str) -> Chunk | None:
        return self.snapshots.current.keyword_index.get(doc_id)

    def clear(self) -> None:
        self.indexer.clear()

    def is_ready(self) -> Capabilities:
        """Reports which strategy is active for each external dependency."""
        if self.embedder is None:
            embedding = "none"
        elif self.embedder.scheme.startswith("remote:"):
            embedding = "remote"
        else:
            embedding = "local"
        return Capabilities(
            embedding=embedding,
            rerank=self.reranker.remote_enabled,
            llm=self.synthesizer.llm is not None,
        )

    def stats(self) -> IndexStats:
        snapshot = self.snapshots.current
        return IndexStats(
            document_count=len(snapshot.keyword_index),
            vector_count=snapshot.vector_store.count() if snapshot.vector_store is not None else 0,
            indexed_words=snapshot.keyword_index.indexed_words,
            embedding_scheme=snapshot.embedding_scheme,
            indexed_at=snapshot.indexed_at,
            vector_backend=self.settings.vector_backend,
            capabilities=self.is_ready(),
        )

    def close(self) -> None:
        for embedder in (self.embedder, self.fallback_embedder):
            close = getattr(embedder, "close", None)
            if close is not None:
                close()
        self.reranker.close()
        self.synthesizer.close()

    def __enter__(self) -> "RetrievalContext":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _build_embedders(settings: Settings) -> tuple[IEmbedder | None, IEmbedder | None]:
    """Returns (primary, fallback). The local embedder only backs up a remote one."""
    config = settings.embedding
    provider = config.provider
    if provider == "auto":
        provider = "remote" if config.api_key else "none"

    if provider == "none":
        logger.info("Embeddings disabled; search is keyword-only")
        return None, None

    local = ComponentRegistry.get_embedder("local")(dimension=config.local_dimension)
    if provider == "local":
        return local, None

    try:
        remote = ComponentRegistry.get_embedder(provider)(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            batch_size=settings.batch_size,
            max_chars=config.max_chars,
            batch_delay=config.batch_delay,
            timeout=config.timeout,
        )
    except ConfigurationError as e:
        logger.warning("{} Falling back to local embeddings.", e)
        return local, None
    return remote, local


def build_context(settings: Settings, load: bool = True) -> RetrievalContext:
    """Dependency Injection Factory driven by Settings."""
    backend = ComponentRegistry.get_vector_backend(settings.vector_backend).from_settings(settings)
    embedder, fallback = _build_embedders(settings)

    rerank_client: Any = None
    if settings.rerank.api_key:
        rerank_client = CohereRerankClient(
            api_key=settings.rerank.api_key,
            model=settings.rerank.model,
            base_url=settings.rerank.base_url,
            timeout=settings.rerank.timeout,
        )
    else:
        logger.info("Rerank API key not configured, using heuristic reranking")

    llm: Any = None
    if settings.llm.api_key:
        llm = ChatCompletionClient(
            api_key=settings.llm.api_key,
            model=settings.llm.model,
            base_url=settings.llm.base_url,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
            timeout=settings.llm.timeout,
        )
    else:
        logger.info("LLM API key not configured, answers will be rule-based")

    context = RetrievalContext(
        settings,
        backend,
        embedder=embedder,
        fallback_embedder=fallback,
        rerank_client=rerank_client,
        llm=llm,
    )
    if load:
        context.load()
    return context

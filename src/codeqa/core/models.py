from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ChunkType = Literal["function", "method", "class", "component", "interface"]
Confidence = Literal["high", "medium", "low"]
SearchPath = Literal["vector", "keyword", "degraded"]

CHUNKABLE_TYPES: frozenset[str] = frozenset(
    {"function", "method", "class", "component", "interface"}
)


class CamelModel(BaseModel):
    """Base model serialized with the camelCase keys used on disk and over HTTP."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeDocumentation(CamelModel):
    """Generated documentation attached to a code-graph node."""

    summary: str = ""
    description: str = ""


class CodeNode(CamelModel):
    """A symbol produced by the code-graph analyzer."""

    id: str
    label: str
    type: str
    language: str = ""
    file_path: str = ""
    start_line: int = 0
    end_line: int = 0
    parent_id: str | None = None
    source_code: str = ""
    documentation: NodeDocumentation | None = None


class CodeGraph(CamelModel):
    """Analyzer output. Edges are carried through but not used for chunking."""

    nodes: list[CodeNode] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class ChunkMetadata(CamelModel):
    file_path: str
    start_line: int
    end_line: int
    type: ChunkType
    name: str
    language: str
    parent_name: str | None = None
    docstring: str | None = None
    signature: str | None = None


class Chunk(CamelModel):
    """A retrievable unit of text representing one code symbol."""

    id: str
    content: str
    metadata: ChunkMetadata


class VectorDocument(CamelModel):
    """A chunk together with its embedding."""

    id: str
    content: str
    embedding: list[float]
    metadata: ChunkMetadata


class VectorSnapshot(CamelModel):
    """Persisted form of an in-memory vector store."""

    documents: list[VectorDocument] = Field(default_factory=list)
    indexed_at: datetime | None = None
    embedding_scheme: str


class SearchResult(CamelModel):
    """A matched chunk. The score scale depends on the path that produced it."""

    id: str
    content: str
    metadata: ChunkMetadata
    score: float

    def to_chunk(self) -> Chunk:
        return Chunk(id=self.id, content=self.content, metadata=self.metadata)


class SearchOutcome(CamelModel):
    """Search results tagged with the retrieval path that produced them."""

    results: list[SearchResult] = Field(default_factory=list)
    path: SearchPath
    errors: list[str] = Field(default_factory=list)


class ScoredChunk(CamelModel):
    """A rerank candidate."""

    chunk: Chunk
    score: float


class RAGSource(CamelModel):
    """A clickable source reference returned to the host."""

    file_path: str
    start_line: int
    end_line: int
    snippet: str
    relevance_score: float = Field(ge=0.0, le=1.0)
    name: str
    type: str


class RelevantNode(CamelModel):
    name: str
    type: str
    summary: str
    file_path: str
    score: float


class AnswerResult(CamelModel):
    """Synthesized answer plus the evidence it was built from."""

    answer: str
    relevant_nodes: list[RelevantNode] = Field(default_factory=list)
    sources: list[RAGSource] = Field(default_factory=list)
    confidence: Confidence
    ai_generated: bool
    path: SearchPath


class IndexReport(CamelModel):
    """Summary of one wholesale indexing pass."""

    chunks: int
    vector_documents: int
    embedding_scheme: str | None = None
    indexed_at: datetime


class Capabilities(CamelModel):
    """Which strategies are active for each external dependency."""

    embedding: Literal["remote", "local", "none"]
    rerank: bool
    llm: bool


class IndexStats(CamelModel):
    document_count: int
    vector_count: int
    indexed_words: int
    embedding_scheme: str | None = None
    indexed_at: datetime | None = None
    vector_backend: str
    capabilities: Capabilities

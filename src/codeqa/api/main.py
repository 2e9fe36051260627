import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from codeqa.config import load_settings
from codeqa.core.context import RetrievalContext, build_context
from codeqa.core.errors import IndexingInProgressError
from codeqa.core.models import (
    AnswerResult,
    Capabilities,
    CodeGraph,
    CodeNode,
    SearchPath,
    SearchResult,
)
from codeqa.logger import configure_logger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown events for the API."""
    logger.info("[Startup] Loading index and connecting remote services...")
    settings = load_settings()
    configure_logger(settings.log_level, settings.log_serialize)

    try:
        app.state.context = await asyncio.to_thread(build_context, settings)
        logger.info("[Startup] API is ready to accept concurrent requests.")
    except Exception as e:
        logger.error("[Startup] Failed to initialize retrieval context: {}", e)
        raise

    yield

    logger.info("[Shutdown] Cleaning up resources...")
    app.state.context.close()
    app.state.context = None


app = FastAPI(
    title="codeqa API",
    description="Hybrid code search and question answering over an indexed code graph.",
    version="0.1.0",
    lifespan=lifespan,
)


class SearchRequest(BaseModel):
    """Schema for a search request."""

    query: str = Field(..., description="The search query.")
    limit: int = Field(5, ge=1, le=100, description="Maximum number of results to return.")


class SearchResponse(BaseModel):
    """Schema for returning search results."""

    query: str
    path: SearchPath
    results: list[SearchResult]


class AnswerRequest(BaseModel):
    question: str = Field(..., min_length=1, description="A natural-language question.")


class IndexRequest(BaseModel):
    """A code graph as produced by the analyzer."""

    nodes: list[CodeNode]
    edges: list[dict[str, Any]] = Field(default_factory=list)


class IndexResponse(BaseModel):
    chunks: int
    vector_documents: int
    embedding_scheme: str | None


class HealthResponse(BaseModel):
    status: str
    documents: int
    capabilities: Capabilities


def get_context(request: Request) -> RetrievalContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Retrieval context initializing or failed")
    return context


@app.get("/health", response_model=HealthResponse)
async def health_check(context: RetrievalContext = Depends(get_context)) -> HealthResponse:
    """Reports readiness and which strategy is active per external service."""
    return HealthResponse(
        status="healthy",
        documents=len(context.snapshots.current.keyword_index),
        capabilities=context.is_ready(),
    )


@app.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest, context: RetrievalContext = Depends(get_context)
) -> SearchResponse:
    """Executes a hybrid search asynchronously."""
    outcome = await asyncio.to_thread(context.search_with_path, request.query, request.limit)
    return SearchResponse(query=request.query, path=outcome.path, results=outcome.results)


@app.post("/answer", response_model=AnswerResult)
async def answer(
    request: AnswerRequest, context: RetrievalContext = Depends(get_context)
) -> AnswerResult:
    """Answers a question from the indexed code."""
    return await asyncio.to_thread(context.answer, request.question)


@app.post("/index", response_model=IndexResponse)
async def index(
    request: IndexRequest, context: RetrievalContext = Depends(get_context)
) -> IndexResponse:
    """Rebuilds the index from a code graph."""
    graph = CodeGraph(nodes=request.nodes, edges=request.edges)
    try:
        report = await asyncio.to_thread(context.index_graph, graph)
    except IndexingInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return IndexResponse(
        chunks=report.chunks,
        vector_documents=report.vector_documents,
        embedding_scheme=report.embedding_scheme,
    )

from loguru import logger

from codeqa.core.errors import TransientServiceError
from codeqa.core.models import RAGSource, ScoredChunk, SearchResult
from codeqa.core.ports import IRerankClient

SNIPPET_CHARS = 150
LONG_CONTENT_CHARS = 2000

EXACT_NAME_BONUS = 0.5
NAME_MATCH_BONUS = 0.3
DENSITY_WEIGHT = 0.2
TYPE_MATCH_BONUS = 0.2
LONG_CONTENT_PENALTY = 0.1

# Query keyword -> chunk types it asks for
_TYPE_HINTS: dict[str, frozenset[str]] = {
    "class": frozenset({"class"}),
    "interface": frozenset({"interface"}),
    "component": frozenset({"component"}),
    "function": frozenset({"function", "method"}),
    "method": frozenset({"function", "method"}),
}


def to_candidates(results: list[SearchResult]) -> list[ScoredChunk]:
    return [ScoredChunk(chunk=r.to_chunk(), score=r.score) for r in results]


class Reranker:
    """
    Reorders retrieval candidates. Uses the remote rerank client while it
    behaves; the first failure switches this instance to the heuristic scorer
    for good, so a broken service costs at most one round trip.
    """

    def __init__(self, client: IRerankClient | None = None) -> None:
        self.client = client
        self._remote_enabled = client is not None
        if client is None:
            logger.debug("Reranker: no rerank service configured, using heuristic scoring")

    @property
    def remote_enabled(self) -> bool:
        return self._remote_enabled

    def rerank(self, query: str, candidates: list[ScoredChunk], k: int = 5) -> list[ScoredChunk]:
        if not candidates:
            return []
        if len(candidates) <= k:
            return list(candidates)

        if self._remote_enabled and self.client is not None:
            try:
                return self._remote_rerank(query, candidates, k)
            except Exception as e:
                logger.warning("Remote reranking failed, using heuristic for this session: {}", e)
                self._remote_enabled = False

        return self._heuristic_rerank(query, candidates, k)

    def _remote_rerank(self, query: str, candidates: list[ScoredChunk], k: int) -> list[ScoredChunk]:
        ranked = self.client.rerank(query, [c.chunk.content for c in candidates], k)
        reranked = []
        for index, relevance in ranked[:k]:
            if not 0 <= index < len(candidates):
                raise TransientServiceError("rerank", f"result index {index} is out of range")
            reranked.append(ScoredChunk(chunk=candidates[index].chunk, score=relevance))
        return reranked

    def _heuristic_rerank(
        self, query: str, candidates: list[ScoredChunk], k: int
    ) -> list[ScoredChunk]:
        query_lower = query.lower()
        tokens = [word for word in query_lower.split() if len(word) > 2]
        wanted_types: set[str] = set()
        for hint, types in _TYPE_HINTS.items():
            if hint in query_lower:
                wanted_types |= types

        scored = []
        for candidate in candidates:
            score = candidate.score
            content = candidate.chunk.content.lower()
            meta = candidate.chunk.metadata
            name = meta.name.lower()

            if name in tokens:
                score += EXACT_NAME_BONUS
            if any(token in name for token in tokens):
                score += NAME_MATCH_BONUS

            matched = sum(1 for token in tokens if token in content)
            score += DENSITY_WEIGHT * matched / max(len(tokens), 1)

            if meta.type in wanted_types:
                score += TYPE_MATCH_BONUS
            if len(content) > LONG_CONTENT_CHARS:
                score -= LONG_CONTENT_PENALTY

            scored.append(ScoredChunk(chunk=candidate.chunk, score=score))

        # sorted() is stable, so ties keep retrieval order
        return sorted(scored, key=lambda c: c.score, reverse=True)[:k]

    @staticmethod
    def to_sources(results: list[ScoredChunk]) -> list[RAGSource]:
        sources = []
        for result in results:
            chunk = result.chunk
            snippet = chunk.content[:SNIPPET_CHARS]
            if len(chunk.content) > SNIPPET_CHARS:
                snippet += "..."
            sources.append(
                RAGSource(
                    file_path=chunk.metadata.file_path,
                    start_line=chunk.metadata.start_line,
                    end_line=chunk.metadata.end_line,
                    snippet=snippet,
                    relevance_score=min(max(result.score, 0.0), 1.0),
                    name=chunk.metadata.name,
                    type=chunk.metadata.type,
                )
            )
        return sources

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

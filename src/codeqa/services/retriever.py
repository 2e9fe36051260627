from loguru import logger

from codeqa.core.models import SearchOutcome, SearchResult
from codeqa.core.snapshot import SnapshotHolder


class Retriever:
    """Orchestrates hybrid search over the live snapshot and tags the path taken."""

    def __init__(self, snapshots: SnapshotHolder) -> None:
        self.snapshots = snapshots

    def search(self, query: str, k: int = 5) -> list[SearchResult]:
        return self.search_with_path(query, k).results

    def search_with_path(self, query: str, k: int = 5) -> SearchOutcome:
        """
        Vector results are preferred when there are any; keyword search always
        runs as the fallback. Never raises: failures are recorded on the outcome.
        """
        if not query or not query.strip() or k <= 0:
            return SearchOutcome(path="degraded")

        # One snapshot for the whole call, even if a new pass is published meanwhile
        snapshot = self.snapshots.current
        errors: list[str] = []
        vector_results: list[SearchResult] = []

        if snapshot.has_vectors:
            try:
                query_vector = snapshot.embedder.embed(query)
                hits = snapshot.vector_store.search(query_vector, k)
                vector_results = [hit for hit in hits if hit.score > 0]
            except Exception as e:
                logger.warning("Vector search failed, falling back to keyword search: {}", e)
                errors.append(f"vector: {e}")

        keyword_results: list[SearchResult] = []
        try:
            keyword_results = snapshot.keyword_index.search(query, k)
        except Exception as e:
            logger.warning("Keyword search failed: {}", e)
            errors.append(f"keyword: {e}")

        if vector_results:
            return SearchOutcome(results=vector_results, path="vector", errors=errors)
        if keyword_results:
            return SearchOutcome(results=keyword_results, path="keyword", errors=errors)
        return SearchOutcome(path="degraded", errors=errors)

    def print_results(self, outcome: SearchOutcome) -> None:
        """Formats and logs the search results."""
        if not outcome.results:
            logger.info("No results found (path: {})", outcome.path)
            return

        logger.info("Top Results (path: {}):", outcome.path)
        for res in outcome.results:
            meta = res.metadata
            logger.info(
                "[Score: {:.4f} | {} {} | {}:{}-{}]",
                res.score,
                meta.type,
                meta.name,
                meta.file_path,
                meta.start_line,
                meta.end_line,
            )
            snippet = res.content[:100].replace("\n", " ")
            logger.info('  --> "{}..."', snippet)

import httpx

from codeqa.core.errors import ConfigurationError, TransientServiceError
from codeqa.infrastructure.http import bearer, post_json


class CohereRerankClient:
    """Relevance scorer backed by a Cohere-compatible /v1/rerank endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "rerank-english-v3.0",
        base_url: str = "https://api.cohere.com",
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Rerank API key is not configured.")
        self._api_key = api_key
        self._model = model
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def rerank(self, query: str, documents: list[str], top_n: int) -> list[tuple[int, float]]:
        payload = post_json(
            self._client,
            "/v1/rerank",
            {
                "model": self._model,
                "query": query,
                "documents": documents,
                "top_n": top_n,
                "return_documents": False,
            },
            service="rerank",
            headers=bearer(self._api_key),
        )
        results = payload.get("results")
        if not isinstance(results, list):
            raise TransientServiceError("rerank", "response is missing 'results'")
        try:
            return [(int(item["index"]), float(item["relevance_score"])) for item in results]
        except (KeyError, TypeError, ValueError) as e:
            raise TransientServiceError("rerank", f"malformed result entry: {e}") from e

    def close(self) -> None:
        self._client.close()

"""Unit tests for the HTTP clients of the remote services."""

import json

import httpx
import numpy as np
import pytest

from codeqa.core.errors import AuthenticationError, ConfigurationError, TransientServiceError
from codeqa.infrastructure.embeddings.remote import RemoteEmbedder
from codeqa.infrastructure.llm.chat import ChatCompletionClient
from codeqa.infrastructure.reranking.cohere import CohereRerankClient


def _client(handler, base_url="https://api.test/v1"):
    return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler))


def _embedding_handler(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        # Reverse order to check the client sorts by index
        data = [
            {"index": i, "embedding": [float(len(text)), 1.0, 0.0]}
            for i, text in enumerate(body["input"])
        ]
        return httpx.Response(200, json={"data": list(reversed(data))})

    return handler


class TestRemoteEmbedder:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            RemoteEmbedder(api_key="")

    def test_scheme(self):
        embedder = RemoteEmbedder(api_key="k", model="m-1", client=_client(lambda r: None))
        assert embedder.scheme == "remote:m-1"
        assert embedder.dimension == 0

    def test_embed_batch_orders_and_batches(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr("codeqa.infrastructure.embeddings.remote.time.sleep", sleeps.append)
        requests = []
        embedder = RemoteEmbedder(
            api_key="k",
            batch_size=2,
            batch_delay=0.25,
            client=_client(_embedding_handler(requests)),
        )

        vectors = embedder.embed_batch(["a", "bb", "ccc"])

        assert vectors.shape == (3, 3)
        assert vectors.dtype == np.float32
        assert list(vectors[:, 0]) == [1.0, 2.0, 3.0]
        assert [len(r["input"]) for r in requests] == [2, 1]
        assert sleeps == [0.25]
        assert embedder.dimension == 3

    def test_truncates_long_inputs(self):
        requests = []
        embedder = RemoteEmbedder(
            api_key="k", max_chars=5, client=_client(_embedding_handler(requests))
        )
        embedder.embed("abcdefghij")
        assert requests[0]["input"] == ["abcde"]

    def test_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

        RemoteEmbedder(api_key="secret", client=_client(handler)).embed("text")
        assert seen["auth"] == "Bearer secret"

    def test_empty_text_rejected(self):
        embedder = RemoteEmbedder(api_key="k", client=_client(lambda r: None))
        with pytest.raises(ValueError):
            embedder.embed("   ")

    def test_unauthorized_raises_authentication_error(self):
        handler = lambda r: httpx.Response(401, json={"error": {"message": "Incorrect API key"}})
        embedder = RemoteEmbedder(api_key="bad", client=_client(handler))

        with pytest.raises(AuthenticationError) as exc_info:
            embedder.embed("text")
        assert exc_info.value.status_code == 401
        assert "Incorrect API key" in str(exc_info.value)

    def test_server_error_raises_transient(self):
        handler = lambda r: httpx.Response(503, text="overloaded")
        embedder = RemoteEmbedder(api_key="k", client=_client(handler))

        with pytest.raises(TransientServiceError) as exc_info:
            embedder.embed_batch(["text"])
        assert not isinstance(exc_info.value, AuthenticationError)
        assert exc_info.value.status_code == 503

    def test_connection_failure_raises_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        embedder = RemoteEmbedder(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError):
            embedder.embed("text")

    def test_count_mismatch_raises_transient(self):
        handler = lambda r: httpx.Response(200, json={"data": []})
        embedder = RemoteEmbedder(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError):
            embedder.embed("text")

    def test_malformed_entry_raises_transient(self):
        handler = lambda r: httpx.Response(200, json={"data": [{"index": 0}]})
        embedder = RemoteEmbedder(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError, match="malformed"):
            embedder.embed("text")

    def test_ragged_embeddings_raise_transient(self):
        handler = lambda r: httpx.Response(
            200,
            json={"data": [{"index": 0, "embedding": [1.0, 2.0]}, {"index": 1, "embedding": [1.0]}]},
        )
        embedder = RemoteEmbedder(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError, match="inconsistent"):
            embedder.embed_batch(["a", "b"])


class TestCohereRerankClient:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            CohereRerankClient(api_key="")

    def test_rerank_parses_results(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"results": [{"index": 2, "relevance_score": 0.9}, {"index": 0, "relevance_score": 0.4}]},
            )

        client = CohereRerankClient(
            api_key="k", client=_client(handler, base_url="https://rerank.test")
        )
        ranked = client.rerank("query", ["a", "b", "c"], top_n=2)

        assert ranked == [(2, 0.9), (0, 0.4)]
        assert seen["path"] == "/v1/rerank"
        assert seen["body"]["top_n"] == 2
        assert seen["body"]["return_documents"] is False

    def test_missing_results_raises(self):
        handler = lambda r: httpx.Response(200, json={"id": "x"})
        client = CohereRerankClient(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError):
            client.rerank("q", ["a"], 1)

    def test_timeout_raises_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = CohereRerankClient(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError, match="timed out"):
            client.rerank("q", ["a"], 1)


class TestChatCompletionClient:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            ChatCompletionClient(api_key="")

    def test_complete_returns_message_content(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"choices": [{"message": {"role": "assistant", "content": "It parses."}}]}
            )

        client = ChatCompletionClient(api_key="k", model="m", client=_client(handler))
        assert client.complete("system", "user") == "It parses."

        messages = seen["body"]["messages"]
        assert messages[0] == {"role": "system", "content": "system"}
        assert messages[1] == {"role": "user", "content": "user"}
        assert seen["body"]["model"] == "m"

    def test_malformed_response_raises(self):
        handler = lambda r: httpx.Response(200, json={"choices": []})
        client = ChatCompletionClient(api_key="k", client=_client(handler))
        with pytest.raises(TransientServiceError):
            client.complete("s", "u")

    def test_forbidden_raises_authentication_error(self):
        handler = lambda r: httpx.Response(403, json={"message": "forbidden"})
        client = ChatCompletionClient(api_key="k", client=_client(handler))
        with pytest.raises(AuthenticationError):
            client.complete("s", "u")

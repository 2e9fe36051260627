import httpx

from codeqa.core.errors import ConfigurationError, TransientServiceError
from codeqa.infrastructure.http import bearer, post_json


class ChatCompletionClient:
    """Answer generation through an OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("LLM API key is not configured.")
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = post_json(
            self._client,
            "/chat/completions",
            {
                "model": self._model,
                "temperature": self._temperature,
                "max_tokens": self._max_tokens,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            },
            service="llm",
            headers=bearer(self._api_key),
        )
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransientServiceError("llm", f"malformed completion response: {e}") from e
        return content or ""

    def close(self) -> None:
        self._client.close()

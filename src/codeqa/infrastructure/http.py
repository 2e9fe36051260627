from typing import Any

import httpx

from codeqa.core.errors import AuthenticationError, TransientServiceError


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        error = payload.get("error") or payload.get("message") or payload
        if isinstance(error, dict):
            return str(error.get("message", error))
        return str(error)
    return str(payload)[:200]


def post_json(
    client: httpx.Client,
    path: str,
    body: dict[str, Any],
    *,
    service: str,
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    """POSTs JSON and returns the decoded object, mapping every failure to a service error."""
    try:
        response = client.post(path, json=body, headers=headers)
    except httpx.TimeoutException as e:
        raise TransientServiceError(service, f"request timed out: {e}") from e
    except httpx.HTTPError as e:
        raise TransientServiceError(service, f"request failed: {e}") from e

    if response.status_code in (401, 403):
        raise AuthenticationError(
            service,
            f"{response.status_code} Unauthorized: {_error_detail(response)}",
            status_code=response.status_code,
        )
    if response.is_error:
        raise TransientServiceError(
            service,
            f"HTTP {response.status_code}: {_error_detail(response)}",
            status_code=response.status_code,
        )

    try:
        payload = response.json()
    except ValueError as e:
        raise TransientServiceError(service, "response was not valid JSON") from e
    if not isinstance(payload, dict):
        raise TransientServiceError(service, "response was not a JSON object")
    return payload


def bearer(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}

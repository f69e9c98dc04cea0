"""HTTP client for the external completion API.

One POST per prompt, no retries. Every way the call can fail (transport
error, timeout, non-2xx status, undecodable body) surfaces as a single
CompletionError so the router only has one failure to contain.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from chat_agent.constants import DEFAULT_COMPLETION_TIMEOUT
from chat_agent.models import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """The completion API call failed; the message is safe to show users."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CompletionClient:
    """Async client for a ``{model, prompt}`` -> ``{choices: [...]}`` endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_COMPLETION_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_url: Full URL of the completion endpoint.
            api_key: Sent as a bearer token when set.
            timeout: Seconds before the request counts as failed.
            http_client: Pre-built client (tests pass one with a MockTransport).
        """
        self.api_url = api_url
        self._owns_client = http_client is None
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def complete(self, model: str, prompt: str) -> CompletionResponse:
        """Send one prompt and return the parsed response.

        Raises:
            CompletionError: On any transport or remote failure.
        """
        request = CompletionRequest(model=model, prompt=prompt)
        try:
            response = await self._client.post(
                self.api_url, json=request.to_dict(), headers=self._headers
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise CompletionError(f"request timed out ({type(e).__name__})") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise CompletionError(
                f"{status} {e.response.reason_phrase}".strip(), status_code=status
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CompletionError(str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError as e:
            raise CompletionError("invalid JSON in completion response") from e

        if body is not None and not isinstance(body, dict):
            raise CompletionError("unexpected completion response shape")
        try:
            return CompletionResponse.from_dict(body)
        except (TypeError, ValueError, AttributeError) as e:
            raise CompletionError("unexpected completion response shape") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

"""Shared async JSON-over-HTTP client with provider error mapping.

Maps httpx failures onto the taleweaver error taxonomy:
- timeouts and network errors -> TransientNetworkError (retryable)
- non-2xx responses           -> ProviderHTTPError
- unparseable bodies          -> ProviderResponseError
"""

import json
import logging
from typing import Any, Optional

import httpx

from taleweaver.errors import ProviderError, ProviderHTTPError, ProviderResponseError, TransientNetworkError

logger = logging.getLogger(__name__)


class JsonHttpClient:
    """Thin wrapper over a lazily-created ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        prefix: str,
        headers: Optional[dict[str, str]] = None,
        payload: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Send a request and decode the JSON object it returns.

        Args:
            method: HTTP method
            url: Absolute URL
            prefix: Reason-code prefix for errors (e.g. ``llm``, ``image``)
            headers: Extra request headers
            payload: JSON body
            timeout: Per-request timeout overriding the client default

        Returns:
            Decoded JSON object (empty dict for an empty body)
        """
        client = self._get_client()
        kwargs: dict[str, Any] = {"headers": headers or {}}
        if payload is not None:
            kwargs["json"] = payload
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{prefix}_timeout:{type(e).__name__}") from e
        except httpx.NetworkError as e:
            raise TransientNetworkError(f"{prefix}_network:{type(e).__name__}:{e}") from e
        except httpx.TransportError as e:
            raise ProviderError(f"{prefix}_transport:{type(e).__name__}:{e}") from e

        text = response.text
        if not response.is_success:
            logger.warning(f"{prefix} request to {url} returned {response.status_code}")
            raise ProviderHTTPError(prefix, response.status_code, text)

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProviderResponseError(f"{prefix}_bad_json:{text[:300]}") from e
        if not isinstance(data, dict):
            raise ProviderResponseError(f"{prefix}_bad_json:{text[:300]}")
        return data

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

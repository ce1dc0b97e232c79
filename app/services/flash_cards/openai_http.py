from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}


class UpstreamCallError(Exception):
    """Raised when an OpenAI-compatible endpoint cannot produce a response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OpenAIHttpClient:
    """Thin JSON client for OpenAI-compatible endpoints with retry/backoff."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self.max_retries = settings.UPSTREAM_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = 1.0
        self.max_delay = 20.0
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body.

        Transport errors, timeouts and 408/409/429/5xx responses are retried with
        exponential backoff; other 4xx responses fail immediately.
        """
        if not self.api_key:
            raise UpstreamCallError("OPENAI_API_KEY is not configured")

        client = self._get_client()
        attempts = max(self.max_retries, 0) + 1

        for attempt in range(1, attempts + 1):
            try:
                resp = await client.post(path, json=payload)
            except httpx.HTTPError as e:
                error = UpstreamCallError(f"{type(e).__name__}: {e}")
            else:
                if resp.status_code < 400:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise UpstreamCallError("Upstream returned invalid JSON", resp.status_code) from e
                error = UpstreamCallError(
                    f"Upstream returned HTTP {resp.status_code}", resp.status_code
                )
                if resp.status_code not in RETRYABLE_STATUS_CODES:
                    raise error

            if attempt == attempts:
                logger.error(f"{path} call failed after {attempts} attempt(s): {error}")
                raise error
            delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
            logger.warning(f"{path} call failed (attempt {attempt}): {error}; retrying in {delay}s")
            await asyncio.sleep(delay)

"""
Shared async HTTP client for bibliographic APIs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Peerly/1.0"


class APIError(Exception):
    """Non-2xx response, transport failure or malformed JSON."""

    def __init__(self, message: str, *, status: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status = status
        self.url = url


class RateLimitedError(APIError):
    """HTTP 429 from an upstream source."""


def polite_user_agent(contact_email: Optional[str]) -> str:
    if contact_email:
        return f"{DEFAULT_USER_AGENT} (mailto:{contact_email})"
    return DEFAULT_USER_AGENT


class APIClient:
    """Generic async HTTP API client. One GET per call; retries are the caller's business."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        api_key_header: str = "x-api-key",
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = ClientTimeout(total=timeout)
        self.user_agent = user_agent
        self.api_key_header = api_key_header
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
            if self.api_key:
                headers[self.api_key_header] = self.api_key
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers=headers,
            )
        return self._session

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        GET ``endpoint`` and decode JSON.

        Returns None on 404. Raises RateLimitedError on 429 and APIError on any
        other non-200 status, transport failure or undecodable body.
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        session = await self._get_session()

        try:
            async with session.get(url, params=params) as response:
                if response.status == 200:
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError as exc:
                        raise APIError(f"Malformed JSON from {url}", status=200, url=url) from exc
                    if payload is None:
                        return None
                    if not isinstance(payload, dict):
                        raise APIError(f"Unexpected JSON shape from {url}", status=200, url=url)
                    return payload
                if response.status == 404:
                    await response.read()
                    logger.debug(f"Resource not found: {url}")
                    return None
                if response.status == 429:
                    await response.read()
                    raise RateLimitedError(f"HTTP 429 for {url}", status=429, url=url)
                text = await response.text()
                logger.error(f"API error {response.status}: {text[:200]}")
                raise APIError(f"API error: {response.status}", status=response.status, url=url)
        except asyncio.TimeoutError as exc:
            logger.error(f"Request timeout: {url}")
            raise APIError(f"Request timeout: {url}", url=url) from exc
        except aiohttp.ClientError as exc:
            logger.error(f"Request failed: {url} - {exc}")
            raise APIError(f"Request failed: {url} - {exc}", url=url) from exc

    async def close(self):
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

"""Instagram Graph API client (read side).

Only the calls the post ingestor needs: linked pages, media listing and
raw media download. The access token is sent as a query parameter, as the
Graph API expects.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import InstagramSettings

logger = logging.getLogger(__name__)

MEDIA_FIELDS = "id,caption,media_type,media_url,permalink,thumbnail_url,timestamp"
ACCOUNT_FIELDS = "name,instagram_business_account{id,username}"


class GraphAPIError(Exception):
    """Raised when the Graph API returns an error or cannot be reached."""
    pass


class GraphClient:
    """Thin async wrapper over the Graph API endpoints used for ingestion."""

    def __init__(self, client: httpx.AsyncClient, config: InstagramSettings) -> None:
        self.client = client
        self.config = config

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _get(self, url: str, params: dict[str, Any]) -> httpx.Response:
        return await self.client.get(url, params=params)

    async def _get_json(self, path: str, **params: Any) -> dict[str, Any]:
        url = f"{self.config.graph_url.rstrip('/')}/{path.lstrip('/')}"
        params["access_token"] = self.config.access_token
        try:
            response = await self._get(url, params)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GraphAPIError(f"Request to {path} failed: {e}") from e

        if isinstance(data, dict) and data.get("error"):
            message = data["error"].get("message", "unknown error")
            raise GraphAPIError(f"API Error: {message}")
        if response.status_code >= 400:
            raise GraphAPIError(f"Request to {path} failed with status {response.status_code}")
        return data

    async def list_linked_accounts(self) -> list[dict[str, Any]]:
        """Pages the token can see, with their linked business account if any."""
        data = await self._get_json("me/accounts", fields=ACCOUNT_FIELDS)
        return data.get("data") or []

    async def list_media(self, account_id: str, limit: int) -> list[dict[str, Any]]:
        """Most recent media items for a business account."""
        data = await self._get_json(f"{account_id}/media", fields=MEDIA_FIELDS, limit=limit)
        return data.get("data") or []

    async def download(self, url: str) -> bytes:
        """Fetch raw media bytes from a CDN URL."""
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise GraphAPIError(f"Download failed: {e}") from e
        return response.content

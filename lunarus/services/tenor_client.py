"""
Tenor GIF search client.
"""
import logging
from typing import Any, Dict, List, Optional
import httpx
from lunarus.core.config import settings

logger = logging.getLogger(__name__)


class TenorError(Exception):
    """Upstream search failed."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"tenor upstream error {status_code}")


def pick_media(result: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Map one Tenor result to {id, url, previewUrl, dims}; None when it has no usable GIF."""
    formats = result.get("media_formats") or {}
    tiny = formats.get("tinygif") or formats.get("gif")
    full = formats.get("gif") or formats.get("tinygif")
    url = (full or {}).get("url") or (tiny or {}).get("url")
    if not url:
        return None
    return {
        "id": str(result.get("id", "")),
        "url": url,
        "previewUrl": (tiny or {}).get("url") or (full or {}).get("url"),
        "dims": (full or {}).get("dims") or (tiny or {}).get("dims"),
    }


class TenorClient:
    """Thin async wrapper around the Tenor v2 search endpoint."""

    def __init__(self, api_key: str, client_key: str = "lunarus", base_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.client_key = client_key
        self.base_url = base_url or settings.tenor_base_url
        self.transport = transport

    async def search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        """
        Search GIFs.

        Raises:
            TenorError: on a non-2xx upstream response
        """
        params = {
            "q": query,
            "key": self.api_key,
            "client_key": self.client_key,
            "limit": str(limit),
            "media_filter": "gif,tinygif",
        }
        async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
            response = await client.get(self.base_url, params=params)

        if response.status_code >= 400:
            logger.warning(f"Tenor search failed with {response.status_code}")
            raise TenorError(response.status_code, response.text[:300])

        items = []
        for result in response.json().get("results") or []:
            item = pick_media(result)
            if item is not None:
                items.append(item)
        return items

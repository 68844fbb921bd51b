"""
Serper (google.serper.dev) search provider.

'SerperSearchProvider' is the 'SearchProvider' plugged into 'SearchWebTool'. It
returns Serper's 'organic' rows unchanged; mapping them to the tool's uniform
result shape is the tool's job. Non-2xx responses raise, and there are no
retries: a failed search becomes a failed tool call for the model to react to.
"""

from typing import Any

import httpx
from loguru import logger

SERPER_URL = "https://google.serper.dev/search"


class SerperError(Exception):
    pass


class SerperSearchProvider:
    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None, timeout: float = 15.0) -> None:
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def __call__(self, query: str, num: int) -> list[dict[str, Any]]:
        response = await self._client.post(
            SERPER_URL,
            json={"q": query, "num": num},
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
        )
        if response.status_code >= 400:
            raise SerperError(f"Serper returned {response.status_code}: {response.text[:200]}")
        organic = response.json().get("organic", [])
        logger.debug(f"Serper returned {len(organic)} organic results for {query!r}")
        return organic

    async def aclose(self) -> None:
        await self._client.aclose()

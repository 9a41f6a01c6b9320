"""Nia semantic-memory client — supplementary context search over HTTP.

Pure stdlib transport. Results only ever feed supplementary edges and
historical context; the entity store stays the primary source of truth.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from ambit.config import NIA_API_KEY, NIA_BASE_URL, SEARCH_TIMEOUT
from ambit.llm.parsing import validate_items
from ambit.models import MemoryContext

logger = logging.getLogger(__name__)


class NiaClient:
    """Thin client for the Nia contexts API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else NIA_API_KEY
        self.base_url = (base_url or NIA_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else SEARCH_TIMEOUT

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _get(self, path: str, params: dict) -> object:
        url = f"{self.base_url}{path}?{urllib.parse.urlencode(params)}"
        req = urllib.request.Request(
            url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            },
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))

    def search(self, query: str, tags: str | None = None, limit: int = 20) -> list[MemoryContext]:
        """Blocking semantic search. Raises on transport errors."""
        params: dict = {"q": query, "limit": limit}
        if tags:
            params["tags"] = tags
        data = self._get("/contexts/semantic-search", params)
        if isinstance(data, dict):
            data = data.get("contexts") or data.get("results") or []
        return validate_items(data, MemoryContext)

    async def semantic_search(
        self, query: str, tags: str | None = None, limit: int = 20
    ) -> list[MemoryContext]:
        """Search raced against the timeout. Empty list on any failure."""
        if not self.available:
            return []
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.search, query, tags, limit),
                timeout=self.timeout,
            )
        except TimeoutError:
            logger.debug("Nia search timed out for %r", query)
        except (urllib.error.URLError, OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Nia search failed for %r: %s", query, e)
        return []

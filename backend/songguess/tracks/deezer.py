"""Deezer-backed preview resolver."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING

import httpx
import structlog

if TYPE_CHECKING:
    from songguess.logic.state import Track

logger = structlog.get_logger()

DEEZER_API_BASE = "https://api.deezer.com"


class DeezerPreviewResolver:
    """Look up 30-second preview URLs on Deezer.

    Tries an exact ISRC match first, then a title/artist search. Any HTTP
    failure resolves to None; the track simply stays unplayable.
    """

    def __init__(
        self,
        api_base: str = DEEZER_API_BASE,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def resolve(self, track: Track) -> str | None:
        async with httpx.AsyncClient(
            base_url=self._api_base,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                if track.isrc:
                    preview = await self._by_isrc(client, track.isrc)
                    if preview:
                        return preview
                return await self._by_search(client, track)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("deezer lookup failed", track_id=track.id, error=str(e))
                return None

    async def _by_isrc(self, client: httpx.AsyncClient, isrc: str) -> str | None:
        response = await client.get(f"/track/isrc:{isrc}")
        if response.status_code != HTTPStatus.OK:
            return None
        data = response.json()
        if "error" in data:
            return None
        return data.get("preview") or None

    async def _by_search(self, client: httpx.AsyncClient, track: Track) -> str | None:
        query = f'track:"{track.name}"'
        if track.artists:
            query = f'artist:"{track.artists[0]}" {query}'
        response = await client.get("/search", params={"q": query, "limit": 1})
        if response.status_code != HTTPStatus.OK:
            return None
        results = response.json().get("data") or []
        if not results:
            return None
        return results[0].get("preview") or None

"""Fetch original image bytes from a remote URI or a local file."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from imagevault.errors import SourceFetchError

logger = logging.getLogger(__name__)


class SourceFetcher:
    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def fetch_uri(self, uri: str) -> bytes:
        if not uri:
            raise SourceFetchError("error fetching image source: no URI provided")
        try:
            url = httpx.URL(uri)
        except httpx.InvalidURL as e:
            raise SourceFetchError(f"error fetching image source: invalid URI {uri}: {e}") from e
        if url.scheme not in ("http", "https"):
            raise SourceFetchError(f"error fetching image source: unsupported URI scheme {uri}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            raise SourceFetchError(f"error fetching image source {uri}: {e}") from e
        if resp.status_code != 200:
            raise SourceFetchError(f"error fetching image source {uri}: {resp.status_code} {resp.reason_phrase}")
        logger.info("Fetched %s (%d bytes)", uri, len(resp.content))
        return resp.content

    async def fetch_file(self, path: str) -> bytes:
        if not path:
            raise SourceFetchError("error fetching image source: no file path provided")
        p = Path(path)
        try:
            return await asyncio.to_thread(p.read_bytes)
        except FileNotFoundError as e:
            raise SourceFetchError(f"error fetching image source: file {path} does not exist") from e
        except OSError as e:
            raise SourceFetchError(f"error fetching image source {path}: {e}") from e

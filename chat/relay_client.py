import codecs
import logging
import os
from typing import AsyncIterator, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "http://localhost:8000"
# generation can pause for a long time between fragments
_TIMEOUT = httpx.Timeout(10.0, read=120.0)


class RelayError(Exception):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"relay returned {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class RelayClient:
    """HTTP client for the relay's ``/chat`` endpoint."""

    def __init__(self, base_url: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self._base_url = (base_url or os.getenv("RELAY_URL") or DEFAULT_RELAY_URL).rstrip("/")
        self._http = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=_TIMEOUT)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()

    async def is_alive(self) -> bool:
        try:
            response = await self._client().get(f"{self._base_url}/chat")
        except httpx.HTTPError as e:
            logger.warning("Relay liveness probe failed: %s", e)
            return False
        return response.status_code == 200

    async def stream(self, history: List[Dict[str, str]], model: str) -> AsyncIterator[str]:
        """Yield decoded text for each chunk the relay sends, in receipt order.

        Raises ``RelayError`` for a non-200 answer, ``httpx.HTTPError`` when the
        transport breaks and ``UnicodeDecodeError`` for undecodable bytes.
        """
        turns = [t for t in history if t.get("role") in ("user", "assistant")]
        decoder = codecs.getincrementaldecoder("utf-8")()

        async with self._client().stream(
            "POST",
            f"{self._base_url}/chat",
            json={"messages": turns, "model": model},
        ) as response:
            if response.status_code != 200:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise RelayError(response.status_code, body)

            async for chunk in response.aiter_bytes():
                text = decoder.decode(chunk)
                # a chunk ending mid-character decodes to nothing until the rest arrives
                if text:
                    yield text

        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

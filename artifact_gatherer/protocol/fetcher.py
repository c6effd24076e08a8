# artifact_gatherer/protocol/fetcher.py
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Optional, Set, Union

from artifact_gatherer.config import settings
from artifact_gatherer.errors import GatherError, ProtocolTimeout
from artifact_gatherer.models.artifacts import FetchResponse
from artifact_gatherer.protocol.session import ProtocolSession

logger = logging.getLogger(__name__)

_CLOSE_TIMEOUT_MS = 250


async def fetch_response_body_from_cache(
    session: ProtocolSession,
    request_id: str,
    *,
    timeout_ms: Optional[float] = None,
) -> Union[str, bytes, None]:
    """Body the browser kept for a finished request; bytes when it was base64 on the wire."""
    result = await session.send(
        "Network.getResponseBody",
        {"requestId": request_id},
        timeout_ms=settings.RESPONSE_BODY_TIMEOUT_MS if timeout_ms is None else timeout_ms,
    )
    body = result.get("body")
    if not body:
        return None
    if result.get("base64Encoded"):
        return base64.b64decode(body)
    return body


class Fetcher:
    """Loads arbitrary URLs through the page's own network stack."""

    def __init__(self, session: ProtocolSession):
        self.session = session
        self._closing: Set[asyncio.Task] = set()

    async def fetch_resource(self, url: str, *, timeout_ms: Optional[float] = None) -> FetchResponse:
        if timeout_ms is None:
            timeout_ms = settings.SOURCE_MAP_FETCH_TIMEOUT_MS
        try:
            return await asyncio.wait_for(self._fetch(url), timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise ProtocolTimeout(f"fetch {url}", timeout_ms) from None

    async def _fetch(self, url: str) -> FetchResponse:
        tree = await self.session.send("Page.getFrameTree")
        frame_id = ((tree.get("frameTree") or {}).get("frame") or {}).get("id")
        result = await self.session.send(
            "Network.loadNetworkResource",
            {
                "frameId": frame_id,
                "url": url,
                "options": {"disableCache": True, "includeCredentials": True},
            },
        )
        resource = result.get("resource") or {}
        status = resource.get("httpStatusCode")
        stream = resource.get("stream")
        if not resource.get("success") or not stream or status is None or not (200 <= status < 300):
            if stream:
                await self._close(stream)
            return FetchResponse(status=status, content=None)

        return FetchResponse(status=status, content=await self._read_stream(stream))

    async def _read_stream(self, handle: str) -> str:
        data = bytearray()
        try:
            while True:
                part = await self.session.send("IO.read", {"handle": handle})
                chunk = part.get("data") or ""
                data += base64.b64decode(chunk) if part.get("base64Encoded") else chunk.encode("utf-8")
                if part.get("eof"):
                    break
        except BaseException:
            # a timed-out fetch must not wait for the close
            self._close_later(handle)
            raise
        await self._close(handle)
        # decode once: multi-byte characters may straddle chunks
        return data.decode("utf-8", "replace")

    async def _close(self, handle: str) -> None:
        try:
            await self.session.send("IO.close", {"handle": handle}, timeout_ms=_CLOSE_TIMEOUT_MS)
        except GatherError as e:
            logger.debug("IO.close for %s failed: %s", handle, e)

    def _close_later(self, handle: str) -> None:
        task = asyncio.get_running_loop().create_task(self._close(handle))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

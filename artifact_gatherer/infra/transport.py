# artifact_gatherer/infra/transport.py
# WebSocket framing for the DevTools protocol. The session owns correlation and
# dispatch; a transport only moves JSON objects in both directions.
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx
import orjson
import websockets

from artifact_gatherer.config import settings

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, message: Dict[str, Any]) -> None: ...
    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]: ...
    async def close(self) -> None: ...


async def discover_websocket_url(debugger_url: Optional[str] = None, *, timeout_s: float = 10.0) -> str:
    """
    Asks the browser's HTTP endpoint for its debugger WebSocket URL.
    Accepts either an http(s) base URL or an already-resolved ws(s) URL.
    """
    base = (debugger_url or settings.DEBUGGER_URL).rstrip("/")
    if base.startswith(("ws://", "wss://")):
        return base
    async with httpx.AsyncClient(timeout=timeout_s) as client:
        r = await client.get(f"{base}/json/version")
        r.raise_for_status()
        data = r.json()
    ws_url = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
    if not ws_url:
        raise RuntimeError(f"No webSocketDebuggerUrl advertised by {base}")
    return ws_url


class WebSocketTransport:
    def __init__(self, ws_url: str):
        self.ws_url = ws_url
        self._conn = None

    @classmethod
    async def connect(cls, debugger_url: Optional[str] = None) -> "WebSocketTransport":
        transport = cls(await discover_websocket_url(debugger_url))
        transport._conn = await websockets.connect(transport.ws_url, max_size=None, ping_interval=None)
        logger.info("Transport connected: %s", transport.ws_url)
        return transport

    async def send(self, message: Dict[str, Any]) -> None:
        if self._conn is None:
            raise RuntimeError("transport is not connected")
        await self._conn.send(orjson.dumps(message).decode("utf-8"))

    async def _messages(self) -> AsyncIterator[Dict[str, Any]]:
        if self._conn is None:
            return
        async for raw in self._conn:
            try:
                msg = orjson.loads(raw)
            except orjson.JSONDecodeError:
                logger.warning("Dropping undecodable protocol frame (%d bytes)", len(raw))
                continue
            if isinstance(msg, dict):
                yield msg

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._messages()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            logger.info("Transport closed: %s", self.ws_url)

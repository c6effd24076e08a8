from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from artifact_gatherer.models.events import ErrorReport, RawEvent

_CLOSED = object()


class FakeTransport:
    """
    Scripted stand-in for the browser's WebSocket. Commands with a registered
    responder (or any command when auto_respond is on) get a reply; others
    are left unanswered so timeouts can be exercised.
    """

    def __init__(self, *, auto_respond: bool = True):
        self.auto_respond = auto_respond
        self.sent: List[Dict[str, Any]] = []
        self.responders: Dict[str, Tuple[Any, Optional[Dict[str, Any]]]] = {}
        self.silent: set = set()
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def respond(self, method: str, result: Any = None, *, error: Optional[Dict[str, Any]] = None) -> None:
        self.responders[method] = (result, error)

    def never_respond(self, method: str) -> None:
        self.silent.add(method)

    def methods(self) -> List[str]:
        return [m["method"] for m in self.sent]

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("transport closed")
        self.sent.append(message)
        method = message["method"]
        if method in self.silent:
            return
        entry = self.responders.get(method)
        if entry is None:
            if not self.auto_respond:
                return
            entry = ({}, None)
        result, error = entry
        reply: Dict[str, Any] = {"id": message["id"]}
        if error is not None:
            reply["error"] = error
        else:
            reply["result"] = result(message.get("params") or {}) if callable(result) else (result or {})
        self._inbox.put_nowait(reply)

    def emit(self, method: str, params: Optional[Dict[str, Any]] = None, *, session_id: Optional[str] = None) -> None:
        msg: Dict[str, Any] = {"method": method, "params": params or {}}
        if session_id:
            msg["sessionId"] = session_id
        self._inbox.put_nowait(msg)

    def crash(self) -> None:
        self._inbox.put_nowait(_CLOSED)

    async def _iterate(self):
        while True:
            msg = await self._inbox.get()
            if msg is _CLOSED:
                return
            yield msg

    def __aiter__(self):
        return self._iterate()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)


class RecordingSink:
    def __init__(self):
        self.reports: List[ErrorReport] = []

    def report(self, report: ErrorReport) -> None:
        self.reports.append(report)


async def flush(ticks: int = 10) -> None:
    for _ in range(ticks):
        await asyncio.sleep(0)


def net_event(name: str, params: Dict[str, Any], *, ts: float = 0.0, **extra: Any) -> RawEvent:
    return RawEvent(kind="event", name=f"Network.{name}", payload=params, timestamp=ts, **extra)


def request_events(
    request_id: str,
    url: str,
    *,
    rtype: str = "Script",
    mime: str = "application/javascript",
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    data_length: int = 1000,
    encoded_length: int = 1000,
    **extra: Any,
) -> List[RawEvent]:
    """A complete, successful request/response exchange."""
    return [
        net_event("requestWillBeSent", {
            "requestId": request_id, "type": rtype, "timestamp": 1.0,
            "request": {"url": url, "method": "GET", "headers": {}},
        }, **extra),
        net_event("responseReceived", {
            "requestId": request_id, "type": rtype, "timestamp": 1.1,
            "response": {"url": url, "status": status, "mimeType": mime, "headers": headers or {}},
        }, **extra),
        net_event("dataReceived", {"requestId": request_id, "dataLength": data_length, "encodedDataLength": 0}, **extra),
        net_event("loadingFinished", {"requestId": request_id, "timestamp": 1.2, "encodedDataLength": encoded_length}, **extra),
    ]

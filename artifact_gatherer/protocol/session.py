# artifact_gatherer/protocol/session.py
# One session per run: command correlation, event fan-out, domain state and
# the RawEvent log used later for record reconstruction.
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from artifact_gatherer.config import settings
from artifact_gatherer.errors import ProtocolError, ProtocolTimeout, TargetCrashed
from artifact_gatherer.infra.transport import Transport
from artifact_gatherer.models.events import RawEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], None]
AnyEventHandler = Callable[[RawEvent], None]


@dataclass
class _PendingCommand:
    method: str
    future: asyncio.Future


class ProtocolSession:
    """
    Multiplexes commands and events over a single transport.

    Commands are correlated by a monotonically increasing id. Events are fanned
    out synchronously, in arrival order, to a snapshot of the subscribers taken
    when the event arrives.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        default_timeout_ms: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        session_id: Optional[str] = None,
    ):
        self._transport = transport
        self.default_timeout_ms = settings.PROTOCOL_TIMEOUT_MS if default_timeout_ms is None else default_timeout_ms
        # flattened page session that commands go to unless one is given
        self.session_id = session_id
        self._clock = clock
        self._next_id = 0
        self._pending: Dict[int, _PendingCommand] = {}
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._any_handlers: List[AnyEventHandler] = []
        self._enabled_domains: Set[str] = set()
        self._target_types: Dict[str, str] = {}
        self._crashed: Optional[TargetCrashed] = None
        self._closing = False
        self._reader: Optional[asyncio.Task] = None
        self.events: List[RawEvent] = []

    # ---- lifecycle ------------------------------------------------------
    async def start(self) -> "ProtocolSession":
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())
        return self

    async def close(self) -> None:
        self._closing = True
        self._fail_outstanding(TargetCrashed("session closed"))
        try:
            await self._transport.close()
        finally:
            if self._reader is not None and not self._reader.done():
                self._reader.cancel()
                try:
                    await self._reader
                except asyncio.CancelledError:
                    pass

    async def __aenter__(self) -> "ProtocolSession":
        return await self.start()

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def crashed(self) -> bool:
        return self._crashed is not None

    @property
    def outstanding(self) -> int:
        return len(self._pending)

    # ---- commands -------------------------------------------------------
    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        timeout_ms: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if self._crashed is not None:
            raise TargetCrashed(self._crashed.reason)

        session_id = session_id or self.session_id
        self._next_id += 1
        cmd_id = self._next_id
        message: Dict[str, Any] = {"id": cmd_id, "method": method, "params": params or {}}
        if session_id:
            message["sessionId"] = session_id

        future = asyncio.get_running_loop().create_future()
        self._pending[cmd_id] = _PendingCommand(method=method, future=future)
        self._record("command", method, params or {}, session_id)

        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        try:
            try:
                await self._transport.send(message)
            except Exception as e:
                self._pending.pop(cmd_id, None)
                self._crash(f"transport send failed: {e}")
                raise TargetCrashed(f"transport send failed while sending {method}: {e}") from e
            result = await asyncio.wait_for(future, timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise ProtocolTimeout(method, timeout_ms) from None
        finally:
            self._pending.pop(cmd_id, None)
        return result

    # ---- events ---------------------------------------------------------
    def on(self, event_name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def off(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name) or []
        if handler in handlers:
            handlers.remove(handler)

    def on_any(self, handler: AnyEventHandler) -> None:
        self._any_handlers.append(handler)

    def off_any(self, handler: AnyEventHandler) -> None:
        if handler in self._any_handlers:
            self._any_handlers.remove(handler)

    # ---- domains --------------------------------------------------------
    async def enable_domain(self, name: str) -> None:
        if name in self._enabled_domains:
            return
        await self.send(f"{name}.enable")
        self._enabled_domains.add(name)

    async def disable_domain(self, name: str) -> None:
        if name not in self._enabled_domains:
            return
        self._enabled_domains.discard(name)
        await self.send(f"{name}.disable")

    def is_enabled(self, name: str) -> bool:
        return name in self._enabled_domains

    # ---- targets --------------------------------------------------------
    async def attach_to_page(self, url_prefix: str = "") -> str:
        """
        Attaches to a page target over the browser connection (flattened) and
        makes it the default destination for later commands. A blank page is
        opened when no page target matches.
        """
        if self.session_id is not None:
            return self.session_id
        result = await self.send("Target.getTargets")
        pages = [
            t for t in result.get("targetInfos") or []
            if t.get("type") == "page" and (t.get("url") or "").startswith(url_prefix)
        ]
        if pages:
            target_id = pages[0]["targetId"]
        else:
            target_id = (await self.send("Target.createTarget", {"url": "about:blank"}))["targetId"]

        attached = await self.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        session_id = attached.get("sessionId")
        if not session_id:
            raise ProtocolError("Target.attachToTarget", None, f"no session for target {target_id}")
        self._target_types[session_id] = "page"
        self.session_id = session_id
        logger.info("Attached to page target %s (session %s)", target_id, session_id)
        return session_id

    async def auto_attach(self) -> None:
        """Child targets (out-of-process iframes, workers) attach as flattened sessions."""
        await self.send(
            "Target.setAutoAttach",
            {"autoAttach": True, "flatten": True, "waitForDebuggerOnStart": False},
        )

    def target_type(self, session_id: Optional[str]) -> Optional[str]:
        return self._target_types.get(session_id) if session_id else None

    # ---- failure ---------------------------------------------------------
    def abort(self, reason: str = "run aborted") -> None:
        """Fails every outstanding command; later sends are still accepted."""
        self._fail_outstanding(TargetCrashed(reason))

    def _crash(self, reason: str) -> None:
        if self._crashed is not None:
            return
        self._crashed = TargetCrashed(reason)
        logger.error("Target crashed: %s (%d outstanding commands)", reason, len(self._pending))
        self._fail_outstanding(self._crashed)

    def _fail_outstanding(self, exc: TargetCrashed) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for cmd in pending:
            if not cmd.future.done():
                cmd.future.set_exception(TargetCrashed(f"{exc.reason} while awaiting {cmd.method}"))

    # ---- reader ---------------------------------------------------------
    async def _read_loop(self) -> None:
        try:
            async for message in self._transport:
                self._handle(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closing:
                self._crash(f"transport failed: {e}")
            return
        if not self._closing:
            self._crash("transport closed unexpectedly")

    def _handle(self, message: Dict[str, Any]) -> None:
        if "id" in message:
            self._handle_response(message)
        elif "method" in message:
            self._handle_event(message)

    def _handle_response(self, message: Dict[str, Any]) -> None:
        cmd = self._pending.pop(message["id"], None)
        if cmd is None:
            logger.debug("Response for unknown or expired command id %s", message["id"])
            return
        if cmd.future.done():
            return
        error = message.get("error")
        if error:
            cmd.future.set_exception(
                ProtocolError(cmd.method, error.get("code"), error.get("message", ""), error.get("data"))
            )
        else:
            cmd.future.set_result(message.get("result") or {})

    def _handle_event(self, message: Dict[str, Any]) -> None:
        name = message["method"]
        params = message.get("params") or {}
        session_id = message.get("sessionId")

        if name == "Target.attachedToTarget":
            info = params.get("targetInfo") or {}
            if params.get("sessionId"):
                self._target_types[params["sessionId"]] = info.get("type", "other")
        elif name == "Target.detachedFromTarget" and params.get("sessionId"):
            self._target_types.pop(params["sessionId"], None)

        event = self._record("event", name, params, session_id)

        for handler in list(self._handlers.get(name, ())):
            try:
                handler(params)
            except Exception:
                logger.exception("Handler for %s failed", name)
        for handler in list(self._any_handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event recorder failed on %s", name)

        if name == "Inspector.targetCrashed" and session_id in (None, self.session_id):
            self._crash("Inspector.targetCrashed")

    def _record(self, kind: str, name: str, payload: Dict[str, Any], session_id: Optional[str]) -> RawEvent:
        event = RawEvent(
            kind=kind,
            name=name,
            payload=payload,
            timestamp=self._clock(),
            session_id=session_id,
            target_type=self._target_types.get(session_id) if session_id else None,
        )
        self.events.append(event)
        return event

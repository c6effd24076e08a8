"""
Records every protocol event seen during the instrumentation window. The
result is the raw input for computed artifacts such as NetworkRecords.

Out-of-process iframes arrive as auto-attached child sessions; Network is
enabled on each of them so their requests land in the same log.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from artifact_gatherer.errors import GatherError
from artifact_gatherer.gather.spi import BaseGatherer, GatherContext
from artifact_gatherer.models.artifacts import GathererMeta
from artifact_gatherer.models.events import RawEvent
from artifact_gatherer.protocol.session import ProtocolSession

logger = logging.getLogger(__name__)


class DevtoolsLog(BaseGatherer):
    name = "DevtoolsLog"
    meta = GathererMeta()
    domains = ("Page", "Network")
    child_domains = ("Network",)

    def __init__(self):
        self._events: List[RawEvent] = []
        self._recording = False
        self._session: Optional[ProtocolSession] = None
        self._child_setup: Set[asyncio.Task] = set()

    def _on_event(self, event: RawEvent) -> None:
        if self._recording:
            self._events.append(event)

    def _on_attached(self, params: Dict[str, Any]) -> None:
        child = params.get("sessionId")
        if not child or not self._recording or self._session is None:
            return
        if (params.get("targetInfo") or {}).get("type") != "iframe":
            return
        task = asyncio.get_running_loop().create_task(self._enable_child(self._session, child))
        self._child_setup.add(task)
        task.add_done_callback(self._child_setup.discard)

    async def _enable_child(self, session: ProtocolSession, child: str) -> None:
        for domain in self.child_domains:
            try:
                await session.send(f"{domain}.enable", session_id=child)
            except GatherError as e:
                # the frame may be gone before it could be instrumented
                logger.debug("Could not enable %s on child session %s: %s", domain, child, e)

    async def start_instrumentation(self, ctx: GatherContext) -> None:
        self._recording = True
        self._session = ctx.session
        ctx.session.on_any(self._on_event)
        ctx.session.on("Target.attachedToTarget", self._on_attached)
        for domain in self.domains:
            await ctx.session.enable_domain(domain)
        await ctx.session.auto_attach()

    async def stop_instrumentation(self, ctx: GatherContext) -> None:
        self._recording = False
        ctx.session.off_any(self._on_event)
        ctx.session.off("Target.attachedToTarget", self._on_attached)
        if self._child_setup:
            await asyncio.gather(*self._child_setup, return_exceptions=True)

    async def get_artifact(self, ctx: GatherContext) -> List[RawEvent]:
        return list(self._events)

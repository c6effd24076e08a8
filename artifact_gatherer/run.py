# artifact_gatherer/run.py
# Convenience wiring: connect to the browser, run the gatherers, tear down.
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from artifact_gatherer.config import settings
from artifact_gatherer.errors import NavigationFailed
from artifact_gatherer.gather.artifacts import ArtifactSet
from artifact_gatherer.gather.registry import build_gatherers
from artifact_gatherer.gather.runner import Collect, GatherRunner
from artifact_gatherer.gather.spi import BaseGatherer
from artifact_gatherer.infra.error_sink import ErrorSink, default_error_sink
from artifact_gatherer.infra.transport import WebSocketTransport
from artifact_gatherer.logging import setup_logging
from artifact_gatherer.models.artifacts import GatherMode
from artifact_gatherer.protocol.fetcher import Fetcher
from artifact_gatherer.protocol.session import ProtocolSession

logger = logging.getLogger(__name__)


def navigate(url: str, *, settle_s: float = 2.0, load_timeout_s: Optional[float] = None) -> Collect:
    """
    Collection window for navigation mode: load `url`, then let the page settle.
    A page that never fires its load event is gathered as far as it got.
    """
    if load_timeout_s is None:
        load_timeout_s = settings.PAGE_LOAD_TIMEOUT_MS / 1000.0

    async def _collect(session: ProtocolSession) -> None:
        loaded = asyncio.get_running_loop().create_future()

        def _on_load(_params: dict) -> None:
            if not loaded.done():
                loaded.set_result(None)

        session.on("Page.loadEventFired", _on_load)
        try:
            await session.enable_domain("Page")
            result = await session.send("Page.navigate", {"url": url})
            if result.get("errorText"):
                raise NavigationFailed(url, result["errorText"])
            try:
                await asyncio.wait_for(loaded, load_timeout_s)
            except asyncio.TimeoutError:
                logger.warning("No load event for %s after %gs; gathering what was collected", url, load_timeout_s)
                return
            await asyncio.sleep(settle_s)
        finally:
            session.off("Page.loadEventFired", _on_load)

    return _collect


async def gather_artifacts(
    gatherers: Optional[Iterable[BaseGatherer]] = None,
    *,
    mode: GatherMode | str = GatherMode.NAVIGATION,
    collect: Optional[Collect] = None,
    debugger_url: Optional[str] = None,
    target_url: str = "",
    error_sink: Optional[ErrorSink] = None,
    run_timeout_s: Optional[float] = None,
) -> ArtifactSet:
    """
    Connects to the browser endpoint, attaches to the first page target whose
    URL starts with `target_url` and runs one gathering pass on it.
    """
    setup_logging()
    sink = error_sink or default_error_sink()
    try:
        transport = await WebSocketTransport.connect(debugger_url or settings.DEBUGGER_URL)
        async with ProtocolSession(transport) as session:
            await session.attach_to_page(target_url)
            runner = GatherRunner(
                session,
                gatherers if gatherers is not None else build_gatherers(),
                mode=mode,
                fetcher=Fetcher(session),
                error_sink=sink,
            )
            timer = None
            if run_timeout_s:
                timer = asyncio.get_running_loop().call_later(
                    run_timeout_s, runner.abort, f"run exceeded {run_timeout_s:g}s"
                )
            try:
                return await runner.run(collect)
            finally:
                if timer is not None:
                    timer.cancel()
    finally:
        # sinks created here are owned here; callers close their own
        close = getattr(sink, "close", None) if error_sink is None else None
        if close is not None:
            await close()

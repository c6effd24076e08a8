from __future__ import annotations

import asyncio
import logging

import pytest

from artifact_gatherer import run as run_module
from artifact_gatherer.errors import NavigationFailed
from artifact_gatherer.gather.gatherers import DevtoolsLog
from artifact_gatherer.protocol.session import ProtocolSession
from tests.helpers import FakeTransport, RecordingSink


@pytest.mark.anyio
async def test_navigation_error_text_fails_the_collection(transport: FakeTransport):
    transport.respond("Page.navigate", {"frameId": "F1", "errorText": "net::ERR_NAME_NOT_RESOLVED"})

    async with ProtocolSession(transport) as session:
        with pytest.raises(NavigationFailed, match="ERR_NAME_NOT_RESOLVED"):
            await asyncio.wait_for(run_module.navigate("https://nowhere.test", settle_s=0)(session), 1)


@pytest.mark.anyio
async def test_missing_load_event_ends_collection_after_load_timeout(transport: FakeTransport):
    transport.respond("Page.navigate", {"frameId": "F1"})

    async with ProtocolSession(transport) as session:
        await asyncio.wait_for(run_module.navigate("https://slow.test", settle_s=0, load_timeout_s=0.05)(session), 1)

    assert transport.methods() == ["Page.enable", "Page.navigate"]


class _ClosableSink(RecordingSink):
    def __init__(self):
        super().__init__()
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _page_transport() -> FakeTransport:
    transport = FakeTransport()
    transport.respond("Target.getTargets", {"targetInfos": [{"targetId": "T1", "type": "page", "url": "about:blank"}]})
    transport.respond("Target.attachToTarget", {"sessionId": "P1"})
    return transport


@pytest.fixture
def wired(monkeypatch):
    transport = _page_transport()
    owned = _ClosableSink()

    class _Connector:
        @staticmethod
        async def connect(url):
            return transport

    monkeypatch.setattr(run_module, "WebSocketTransport", _Connector)
    monkeypatch.setattr(run_module, "default_error_sink", lambda: owned)
    root = logging.getLogger()
    before = list(root.handlers)
    yield transport, owned
    root.handlers[:] = before


@pytest.mark.anyio
async def test_gather_artifacts_drives_the_page_and_closes_its_own_sink(wired):
    transport, owned = wired

    artifacts = await asyncio.wait_for(run_module.gather_artifacts([DevtoolsLog()], debugger_url="ws://fake"), 2)

    assert "DevtoolsLog" in artifacts.values
    assert owned.closed
    enables = [m for m in transport.sent if m["method"] == "Page.enable"]
    assert [m.get("sessionId") for m in enables] == ["P1"]


@pytest.mark.anyio
async def test_gather_artifacts_leaves_caller_sink_open(wired):
    _, owned = wired
    mine = _ClosableSink()

    await asyncio.wait_for(run_module.gather_artifacts([DevtoolsLog()], debugger_url="ws://fake", error_sink=mine), 2)

    assert not mine.closed
    assert not owned.closed

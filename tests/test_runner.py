from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from artifact_gatherer.errors import ArtifactMissing
from artifact_gatherer.gather import BaseGatherer, GatherRunner, Phase
from artifact_gatherer.gather.consumers import run_consumers
from artifact_gatherer.gather.gatherers import DevtoolsLog
from artifact_gatherer.models.artifacts import GatherMode, GathererMeta, MissingArtifact
from artifact_gatherer.protocol.session import ProtocolSession
from tests.helpers import FakeTransport, RecordingSink


class Recorder(BaseGatherer):
    """Writes every hook call to a shared journal."""

    def __init__(self, name: str, journal: List[str], *, value: Any = None, meta: GathererMeta = GathererMeta()):
        self.name = name
        self.meta = meta
        self.journal = journal
        self.value = value if value is not None else name.lower()
        self.seen_dependencies: Dict[str, Any] = {}

    async def start_instrumentation(self, ctx):
        self.journal.append(f"{self.name}:start")

    async def start_sensitive_instrumentation(self, ctx):
        self.journal.append(f"{self.name}:start_sensitive")

    async def stop_sensitive_instrumentation(self, ctx):
        self.journal.append(f"{self.name}:stop_sensitive")

    async def stop_instrumentation(self, ctx):
        self.journal.append(f"{self.name}:stop")

    async def get_artifact(self, ctx):
        self.journal.append(f"{self.name}:get_artifact")
        self.seen_dependencies = dict(ctx.dependencies)
        return self.value


class Exploding(Recorder):
    async def get_artifact(self, ctx):
        raise RuntimeError("kaboom")


class BrokenStart(Recorder):
    async def start_instrumentation(self, ctx):
        raise RuntimeError("could not attach")


def _phases(runner: GatherRunner) -> List[Phase]:
    return [phase for phase, _ in runner.phase_log]


@pytest.mark.anyio
async def test_hooks_run_in_phase_order_around_collection(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []

    async def collect(session):
        journal.append("collect")

    async with ProtocolSession(transport) as session:
        runner = GatherRunner(session, [Recorder("A", journal)], error_sink=sink)
        artifacts = await runner.run(collect)

    assert journal == ["A:start", "A:start_sensitive", "collect", "A:stop_sensitive", "A:stop", "A:get_artifact"]
    assert _phases(runner) == [
        Phase.INSTRUMENTATION_STARTED,
        Phase.SENSITIVE_INSTRUMENTATION_STARTED,
        Phase.COLLECTING,
        Phase.SENSITIVE_INSTRUMENTATION_STOPPED,
        Phase.INSTRUMENTATION_STOPPED,
        Phase.ARTIFACTS_PRODUCED,
    ]
    assert artifacts.values == {"A": "a"}


@pytest.mark.anyio
async def test_failing_get_artifact_does_not_affect_siblings(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []

    async with ProtocolSession(transport) as session:
        runner = GatherRunner(session, [Exploding("Bad", journal), Recorder("Good", journal)], error_sink=sink)
        artifacts = await runner.run()

    assert artifacts.values == {"Good": "good"}
    assert "kaboom" in str(artifacts.errors["Bad"])
    assert isinstance(artifacts.get("Bad"), MissingArtifact)
    assert [r.component for r in sink.reports] == ["Bad"]
    assert artifacts.issues == sink.reports


@pytest.mark.anyio
async def test_failed_start_hook_skips_later_starts_but_still_cleans_up(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []

    async with ProtocolSession(transport) as session:
        runner = GatherRunner(session, [BrokenStart("Flaky", journal), Recorder("Solid", journal)], error_sink=sink)
        artifacts = await runner.run()

    assert "Flaky:start_sensitive" not in journal
    assert "Flaky:stop_sensitive" in journal and "Flaky:stop" in journal
    assert "Flaky:get_artifact" not in journal
    assert "could not attach" in str(artifacts.errors["Flaky"])
    assert artifacts.values == {"Solid": "solid"}


@pytest.mark.anyio
async def test_units_not_supporting_mode_are_skipped(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []
    navigation_only = GathererMeta(supported_modes=frozenset({GatherMode.NAVIGATION}))

    async with ProtocolSession(transport) as session:
        runner = GatherRunner(
            session,
            [Recorder("NavOnly", journal, meta=navigation_only), Recorder("Any", journal)],
            mode="timespan",
            error_sink=sink,
        )
        artifacts = await runner.run()

    assert [g.name for g in runner.gatherers] == ["Any"]
    assert list(artifacts) == ["Any"]
    assert not any(entry.startswith("NavOnly") for entry in journal)


def test_duplicate_artifact_names_are_rejected(transport: FakeTransport):
    session = ProtocolSession(transport)

    with pytest.raises(ValueError):
        GatherRunner(session, [Recorder("Same", []), Recorder("Same", [])])


@pytest.mark.anyio
async def test_dependencies_are_produced_first_and_passed_by_local_name(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []
    upstream = Recorder("Upstream", journal, value={"n": 1})
    downstream = Recorder("Downstream", journal, meta=GathererMeta(dependencies={"up": "Upstream"}))

    async with ProtocolSession(transport) as session:
        artifacts = await GatherRunner(session, [downstream, upstream], error_sink=sink).run()

    assert journal.index("Upstream:get_artifact") < journal.index("Downstream:get_artifact")
    assert downstream.seen_dependencies == {"up": {"n": 1}}
    assert artifacts.values["Downstream"] == "downstream"


@pytest.mark.anyio
async def test_failed_required_dependency_fails_dependent(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []
    dependent = Recorder("Dependent", journal, meta=GathererMeta(dependencies={"up": "Bad"}))

    async with ProtocolSession(transport) as session:
        artifacts = await GatherRunner(session, [Exploding("Bad", journal), dependent], error_sink=sink).run()

    assert set(artifacts.errors) == {"Bad", "Dependent"}
    assert isinstance(artifacts.errors["Dependent"], ArtifactMissing)
    assert "Dependent:get_artifact" not in journal


@pytest.mark.anyio
async def test_failed_optional_dependency_arrives_as_missing_marker(transport: FakeTransport, sink: RecordingSink):
    journal: List[str] = []
    tolerant = Recorder(
        "Tolerant",
        journal,
        meta=GathererMeta(dependencies={"up": "Bad"}, optional_dependencies=frozenset({"up"})),
    )

    async with ProtocolSession(transport) as session:
        artifacts = await GatherRunner(session, [Exploding("Bad", journal), tolerant], error_sink=sink).run()

    assert artifacts.values["Tolerant"] == "tolerant"
    assert isinstance(tolerant.seen_dependencies["up"], MissingArtifact)


@pytest.mark.anyio
async def test_abort_during_collection_stops_and_still_produces(sink: RecordingSink):
    transport = FakeTransport()
    journal: List[str] = []
    started = asyncio.Event()

    async def collect(session):
        started.set()
        await asyncio.Event().wait()

    async with ProtocolSession(transport) as session:
        runner = GatherRunner(session, [Recorder("A", journal)], error_sink=sink)
        task = asyncio.ensure_future(runner.run(collect))
        await started.wait()
        runner.abort("run timeout")
        artifacts = await asyncio.wait_for(task, 1)

    assert runner.aborted
    assert journal[-3:] == ["A:stop_sensitive", "A:stop", "A:get_artifact"]
    assert Phase.SENSITIVE_INSTRUMENTATION_STOPPED not in _phases(runner)
    assert _phases(runner)[-1] is Phase.ARTIFACTS_PRODUCED
    assert artifacts.values == {"A": "a"}
    assert any("run timeout" in r.message for r in artifacts.issues)


@pytest.mark.anyio
async def test_collection_failure_is_reported_not_raised(transport: FakeTransport, sink: RecordingSink):
    async def collect(session):
        raise RuntimeError("navigation failed")

    async with ProtocolSession(transport) as session:
        artifacts = await GatherRunner(session, [Recorder("A", [])], error_sink=sink).run(collect)

    assert artifacts.values == {"A": "a"}
    assert any("navigation failed" in r.message for r in sink.reports)


@pytest.mark.anyio
async def test_devtools_log_captures_events_inside_window(transport: FakeTransport, sink: RecordingSink):
    async def collect(session):
        transport.emit("Network.requestWillBeSent", {"requestId": "1", "request": {"url": "https://example.com"}})
        await asyncio.sleep(0.01)

    async with ProtocolSession(transport) as session:
        transport.emit("Network.dataReceived", {"requestId": "0"})
        await asyncio.sleep(0.01)
        artifacts = await GatherRunner(session, [DevtoolsLog()], error_sink=sink).run(collect)

    names = [e.name for e in artifacts.values["DevtoolsLog"]]
    assert names == ["Network.requestWillBeSent"]
    assert transport.methods() == ["Page.enable", "Network.enable", "Target.setAutoAttach"]


@pytest.mark.anyio
async def test_devtools_log_instruments_iframe_children(transport: FakeTransport, sink: RecordingSink):
    async def collect(session):
        transport.emit("Target.attachedToTarget", {"sessionId": "C1", "targetInfo": {"type": "iframe"}})
        transport.emit("Target.attachedToTarget", {"sessionId": "W1", "targetInfo": {"type": "worker"}})
        await asyncio.sleep(0.01)
        transport.emit("Network.requestWillBeSent", {
            "requestId": "9", "type": "Script", "request": {"url": "https://ads.test/frame.js"},
        }, session_id="C1")
        await asyncio.sleep(0.01)

    async with ProtocolSession(transport) as session:
        artifacts = await GatherRunner(session, [DevtoolsLog()], error_sink=sink).run(collect)

    child_enables = [m for m in transport.sent if m.get("sessionId") in ("C1", "W1")]
    assert [(m["method"], m["sessionId"]) for m in child_enables] == [("Network.enable", "C1")]
    frame_event = artifacts.values["DevtoolsLog"][-1]
    assert (frame_event.session_id, frame_event.target_type) == ("C1", "iframe")


class _Consumer:
    def __init__(self, id, required, fn=lambda inputs: sorted(inputs)):
        self.id = id
        self.required_artifacts = required
        self.fn = fn

    def evaluate(self, artifacts):
        return self.fn(artifacts)


@pytest.mark.anyio
async def test_consumers_are_omitted_only_when_their_inputs_are_missing(transport: FakeTransport, sink: RecordingSink):
    async with ProtocolSession(transport) as session:
        artifacts = await GatherRunner(session, [Exploding("Bad", []), Recorder("Good", [])], error_sink=sink).run()

    def broken(inputs):
        raise KeyError("field")

    outcomes = run_consumers(artifacts, [
        _Consumer("uses-good", ["Good"]),
        _Consumer("uses-bad", ["Good", "Bad"]),
        _Consumer("crashes", ["Good"], broken),
    ])

    by_id = {o.id: o for o in outcomes}
    assert by_id["uses-good"].ok and by_id["uses-good"].value == ["Good"]
    assert not by_id["uses-bad"].ok and "Bad" in by_id["uses-bad"].fatal_reason
    assert by_id["crashes"].fatal_reason.startswith("KeyError")

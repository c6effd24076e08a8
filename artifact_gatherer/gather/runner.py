# artifact_gatherer/gather/runner.py
# Drives gatherers through the phases of one run and collects their artifacts.
# Per-unit failures are isolated: they are recorded against the unit's artifact
# and reported, and never stop sibling units.

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from functools import partial
from operator import attrgetter
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from artifact_gatherer.computed.cache import ComputedArtifact, ComputedArtifactCache
from artifact_gatherer.computed.network_records import DEFAULT_COMPUTED
from artifact_gatherer.errors import TargetCrashed
from artifact_gatherer.gather.artifacts import ArtifactSet
from artifact_gatherer.gather.spi import BaseGatherer, GatherContext
from artifact_gatherer.infra.error_sink import CollectingErrorSink, ErrorSink, default_error_sink
from artifact_gatherer.models.artifacts import GatherMode
from artifact_gatherer.models.events import ErrorReport
from artifact_gatherer.protocol.fetcher import Fetcher
from artifact_gatherer.protocol.session import ProtocolSession

logger = logging.getLogger(__name__)

Collect = Callable[[ProtocolSession], Awaitable[None]]


class Phase(str, Enum):
    NOT_STARTED = "NotStarted"
    INSTRUMENTATION_STARTED = "InstrumentationStarted"
    SENSITIVE_INSTRUMENTATION_STARTED = "SensitiveInstrumentationStarted"
    COLLECTING = "Collecting"
    SENSITIVE_INSTRUMENTATION_STOPPED = "SensitiveInstrumentationStopped"
    INSTRUMENTATION_STOPPED = "InstrumentationStopped"
    ARTIFACTS_PRODUCED = "ArtifactsProduced"


_HOOKS = {
    Phase.INSTRUMENTATION_STARTED: attrgetter("start_instrumentation"),
    Phase.SENSITIVE_INSTRUMENTATION_STARTED: attrgetter("start_sensitive_instrumentation"),
    Phase.SENSITIVE_INSTRUMENTATION_STOPPED: attrgetter("stop_sensitive_instrumentation"),
    Phase.INSTRUMENTATION_STOPPED: attrgetter("stop_instrumentation"),
}

# stop hooks still run for units that failed earlier (cleanup)
_CLEANUP_PHASES = {Phase.SENSITIVE_INSTRUMENTATION_STOPPED, Phase.INSTRUMENTATION_STOPPED}


class GatherRunner:
    def __init__(
        self,
        session: ProtocolSession,
        gatherers: Iterable[BaseGatherer],
        *,
        mode: GatherMode | str = GatherMode.NAVIGATION,
        fetcher: Optional[Fetcher] = None,
        error_sink: Optional[ErrorSink] = None,
        computed: Sequence[ComputedArtifact] = DEFAULT_COMPUTED,
    ):
        self.session = session
        self.mode = GatherMode(mode)
        self.fetcher = fetcher or Fetcher(session)
        self.error_sink = CollectingErrorSink(error_sink or default_error_sink())
        self.cache = ComputedArtifactCache(computed=computed, error_sink=self.error_sink)

        self.gatherers: List[BaseGatherer] = []
        for unit in gatherers:
            if self.mode not in unit.meta.supported_modes:
                logger.info("Skipping %s: does not support %s mode", unit.name, self.mode.value)
                continue
            if any(g.name == unit.name for g in self.gatherers):
                raise ValueError(f"Duplicate gatherer artifact name: {unit.name}")
            self.gatherers.append(unit)
            self.cache.register(ComputedArtifact(
                name=unit.name,
                requires=tuple(a for local, a in unit.meta.dependencies.items()
                               if local not in unit.meta.optional_dependencies),
                optional=tuple(unit.meta.dependencies[local] for local in unit.meta.optional_dependencies),
                compute=partial(self._get_artifact, unit),
            ))

        self.phase = Phase.NOT_STARTED
        self.phase_log: List[Tuple[Phase, float]] = []
        self._failed: Dict[str, BaseException] = {}
        self._abort_reason: Optional[str] = None
        self._abort_event: Optional[asyncio.Event] = None

    # ---- public ---------------------------------------------------------
    async def run(self, collect: Optional[Collect] = None) -> ArtifactSet:
        self.cache.validate()
        self._abort_event = asyncio.Event()
        if self._abort_reason is not None:
            self._abort_event.set()
        t0 = time.perf_counter()

        if not self.aborted:
            await self._run_hooks(Phase.INSTRUMENTATION_STARTED)
        if not self.aborted:
            await self._run_hooks(Phase.SENSITIVE_INSTRUMENTATION_STARTED)
        if not self.aborted:
            await self._collect(collect)

        if not self.aborted:
            await self._run_hooks(Phase.SENSITIVE_INSTRUMENTATION_STOPPED)
            await self._run_hooks(Phase.INSTRUMENTATION_STOPPED)
        else:
            # straight to a best-effort stop
            await self._run_hooks(Phase.INSTRUMENTATION_STOPPED, Phase.SENSITIVE_INSTRUMENTATION_STOPPED)
            await self._run_hooks(Phase.INSTRUMENTATION_STOPPED)

        artifacts = await self._produce_artifacts()
        logger.info(
            "Run finished in %.3fs: %d artifact(s), %d failed, %d issue(s)%s",
            time.perf_counter() - t0,
            len(artifacts.values),
            len(artifacts.errors),
            len(artifacts.issues),
            f" (aborted: {self._abort_reason})" if self.aborted else "",
        )
        return artifacts

    def abort(self, reason: str = "run aborted") -> None:
        """External abort (run timeout, quota). Safe to call from any task."""
        if self._abort_reason is not None:
            return
        self._abort_reason = reason
        logger.warning("Aborting run during %s: %s", self.phase.value, reason)
        self.error_sink.report(ErrorReport(component="runner", message=f"run aborted: {reason}", severity="error"))
        self.session.abort(reason)
        self.cache.abort(TargetCrashed(reason))
        if self._abort_event is not None:
            self._abort_event.set()

    @property
    def aborted(self) -> bool:
        return self._abort_reason is not None

    # ---- phases ---------------------------------------------------------
    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        self.phase_log.append((phase, time.perf_counter()))
        logger.debug("Phase -> %s", phase.value)

    def _context(self, dependencies: Optional[Dict[str, Any]] = None) -> GatherContext:
        return GatherContext(
            session=self.session,
            mode=self.mode,
            computed=self.cache,
            fetcher=self.fetcher,
            error_sink=self.error_sink,
            dependencies=dependencies or {},
        )

    async def _run_hooks(self, phase: Phase, hook_phase: Optional[Phase] = None) -> None:
        hook_phase = hook_phase or phase
        if self.phase != phase:
            self._set_phase(phase)
        calls = []
        for unit in self.gatherers:
            if unit.name in self._failed and hook_phase not in _CLEANUP_PHASES:
                continue
            hook = _HOOKS[hook_phase](unit)
            if hook is None:
                continue
            calls.append(self._isolated(unit, hook_phase, hook))
        await asyncio.gather(*calls)

    async def _isolated(self, unit: BaseGatherer, phase: Phase, hook: Callable[[GatherContext], Awaitable[None]]) -> None:
        t0 = time.perf_counter()
        try:
            await hook(self._context())
        except Exception as e:
            self._failed.setdefault(unit.name, e)
            logger.warning("%s failed during %s after %.3fs: %s", unit.name, phase.value, time.perf_counter() - t0, e)
            self.error_sink.report(ErrorReport(
                component=unit.name,
                message=f"{phase.value} failed: {e}",
                severity="error",
            ))

    async def _collect(self, collect: Optional[Collect]) -> None:
        self._set_phase(Phase.COLLECTING)
        if collect is None:
            return
        assert self._abort_event is not None
        work = asyncio.ensure_future(collect(self.session))
        waiter = asyncio.ensure_future(self._abort_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            return
        if work.exception() is not None:
            e = work.exception()
            logger.warning("Collection window failed: %s", e)
            self.error_sink.report(ErrorReport(component="runner", message=f"collection failed: {e}", severity="error"))

    # ---- artifacts ------------------------------------------------------
    async def _get_artifact(self, unit: BaseGatherer, inputs: Dict[str, Any]) -> Any:
        earlier = self._failed.get(unit.name)
        if earlier is not None:
            raise earlier
        dependencies = {local: inputs[artifact] for local, artifact in unit.meta.dependencies.items()}
        return await unit.get_artifact(self._context(dependencies))

    async def _produce_artifacts(self) -> ArtifactSet:
        artifacts = ArtifactSet()
        results = await asyncio.gather(
            *(self.cache.resolve(unit.name) for unit in self.gatherers),
            return_exceptions=True,
        )
        for unit, result in zip(self.gatherers, results):
            if isinstance(result, BaseException):
                artifacts.fail(unit.name, result)
                logger.warning("Artifact %s unavailable: %s", unit.name, result)
                self.error_sink.report(ErrorReport(
                    component=unit.name,
                    message=f"getArtifact failed: {result}",
                    severity="error",
                ))
            else:
                artifacts.set(unit.name, result)
        artifacts.issues = list(self.error_sink.reports)
        self._set_phase(Phase.ARTIFACTS_PRODUCED)
        return artifacts

# artifact_gatherer/computed/cache.py
# Memoized, dependency-ordered evaluation of artifacts within one run.
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from artifact_gatherer.errors import (
    ArtifactComputeFailed,
    ArtifactMissing,
    DependencyCycle,
    GatherError,
)
from artifact_gatherer.infra.error_sink import ErrorSink, NullErrorSink
from artifact_gatherer.models.artifacts import MissingArtifact

logger = logging.getLogger(__name__)

ComputeFn = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class ComputedArtifact:
    """
    A named derivation. `requires` inputs must resolve; `optional` inputs are
    handed over as MissingArtifact when they fail. The function receives a
    dict of input name -> value and must be deterministic for those inputs.
    With `reports_issues` it also receives the run's error sink.
    """
    name: str
    compute: ComputeFn
    requires: Sequence[str] = ()
    optional: Sequence[str] = ()
    reports_issues: bool = False

    @property
    def inputs(self) -> List[str]:
        return list(self.requires) + [n for n in self.optional if n not in self.requires]


class ComputedArtifactCache:
    def __init__(
        self,
        artifacts: Optional[Mapping[str, Any]] = None,
        computed: Iterable[ComputedArtifact] = (),
        *,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.error_sink: ErrorSink = error_sink or NullErrorSink()
        self._raw: Dict[str, Any] = dict(artifacts or {})
        self._definitions: Dict[str, ComputedArtifact] = {}
        self._tasks: Dict[str, asyncio.Future] = {}
        self._validated = False
        self._aborted: Dict[str, GatherError] = {}
        self.compute_counts: Dict[str, int] = {}
        for definition in computed:
            self.register(definition)

    # ---- registration ---------------------------------------------------
    def provide(self, name: str, value: Any) -> None:
        if name in self._definitions:
            raise ValueError(f"{name} is already registered as a computed artifact")
        self._raw[name] = value

    def register(self, definition: ComputedArtifact) -> None:
        if definition.name in self._raw or definition.name in self._definitions:
            raise ValueError(f"Artifact {definition.name} registered twice")
        self._definitions[definition.name] = definition
        self._validated = False

    def __contains__(self, name: str) -> bool:
        return name in self._raw or name in self._definitions

    def validate(self) -> None:
        """Raises DependencyCycle for any cycle among registered derivations."""
        done: set = set()

        def visit(name: str, path: List[str]) -> None:
            if name in done or name not in self._definitions:
                return
            if name in path:
                raise DependencyCycle(path[path.index(name):] + [name])
            path.append(name)
            for dep in self._definitions[name].inputs:
                visit(dep, path)
            path.pop()
            done.add(name)

        for name in self._definitions:
            visit(name, [])
        self._validated = True

    # ---- resolution -----------------------------------------------------
    async def resolve(self, name: str) -> Any:
        if not self._validated:
            self.validate()

        if name in self._raw:
            value = self._raw[name]
            if isinstance(value, MissingArtifact):
                raise ArtifactMissing(name, value.reason)
            return value

        definition = self._definitions.get(name)
        if definition is None:
            raise ArtifactMissing(name, "no gatherer or computed artifact provides it")

        task = self._tasks.get(name)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._compute(definition))
            self._tasks[name] = task

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            reason = self._aborted.get(name)
            if reason is not None:
                raise reason from None
            raise

    async def resolve_optional(self, name: str) -> Any:
        try:
            return await self.resolve(name)
        except GatherError as e:
            return MissingArtifact(name=name, reason=str(e))

    async def _compute(self, definition: ComputedArtifact) -> Any:
        inputs: Dict[str, Any] = {}
        for dep in definition.requires:
            try:
                inputs[dep] = await self.resolve(dep)
            except GatherError as e:
                raise ArtifactMissing(definition.name, f"input {dep} unavailable: {e}") from e
        for dep in definition.optional:
            if dep not in inputs:
                inputs[dep] = await self.resolve_optional(dep)

        self.compute_counts[definition.name] = self.compute_counts.get(definition.name, 0) + 1
        logger.debug("Computing %s", definition.name)
        try:
            if definition.reports_issues:
                value = definition.compute(inputs, self.error_sink)
            else:
                value = definition.compute(inputs)
            if inspect.isawaitable(value):
                value = await value
        except GatherError:
            raise
        except Exception as e:
            raise ArtifactComputeFailed(definition.name, e) from e
        return value

    # ---- run control ----------------------------------------------------
    def failure(self, name: str) -> Optional[BaseException]:
        if name in self._aborted:
            return self._aborted[name]
        task = self._tasks.get(name)
        if task is None or not task.done() or task.cancelled():
            return None
        return task.exception()

    def abort(self, reason: GatherError) -> List[str]:
        """
        Fails every in-flight resolution with `reason` (cached like any other
        failure). Artifacts not yet requested can still be resolved afterwards.
        """
        aborted = []
        for name, task in self._tasks.items():
            if not task.done():
                self._aborted[name] = reason
                task.cancel()
                aborted.append(name)
        if aborted:
            logger.warning("Aborted in-flight artifacts: %s", ", ".join(aborted))
        return aborted

    def reset(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()
        self._aborted.clear()
        self.compute_counts.clear()

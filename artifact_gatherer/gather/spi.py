# artifact_gatherer/gather/spi.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from artifact_gatherer.computed.cache import ComputedArtifactCache
from artifact_gatherer.infra.error_sink import ErrorSink, NullErrorSink
from artifact_gatherer.models.artifacts import GatherMode, GathererMeta
from artifact_gatherer.protocol.fetcher import Fetcher
from artifact_gatherer.protocol.session import ProtocolSession


@dataclass
class GatherContext:
    session: ProtocolSession
    mode: GatherMode
    computed: ComputedArtifactCache
    fetcher: Optional[Fetcher] = None
    error_sink: ErrorSink = field(default_factory=NullErrorSink)
    dependencies: Dict[str, Any] = field(default_factory=dict)   # only set for get_artifact


Hook = Callable[[GatherContext], Awaitable[None]]


class GathererUnit(Protocol):
    name: str
    meta: GathererMeta

    start_instrumentation: Optional[Hook]
    start_sensitive_instrumentation: Optional[Hook]
    stop_sensitive_instrumentation: Optional[Hook]
    stop_instrumentation: Optional[Hook]

    async def get_artifact(self, ctx: GatherContext) -> Any: ...


class BaseGatherer:
    """
    Hooks are explicit optional slots: a subclass defines the ones it needs as
    async methods and leaves the others as None, which the runner skips.
    """
    name: str = ""
    meta: GathererMeta = GathererMeta()

    start_instrumentation: Optional[Hook] = None
    start_sensitive_instrumentation: Optional[Hook] = None
    stop_sensitive_instrumentation: Optional[Hook] = None
    stop_instrumentation: Optional[Hook] = None

    async def get_artifact(self, ctx: GatherContext) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not produce an artifact")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

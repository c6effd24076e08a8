from artifact_gatherer.models.artifacts import (
    CompressionRecord,
    FetchResponse,
    GatherMode,
    GathererMeta,
    MissingArtifact,
    SourceMapResult,
)
from artifact_gatherer.models.events import ErrorReport, RawEvent
from artifact_gatherer.models.network import Header, NetworkRequest, ResourceType

__all__ = [
    "CompressionRecord",
    "ErrorReport",
    "FetchResponse",
    "GatherMode",
    "GathererMeta",
    "Header",
    "MissingArtifact",
    "NetworkRequest",
    "RawEvent",
    "ResourceType",
    "SourceMapResult",
]

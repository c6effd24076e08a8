from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

# ─────────────────────────────────────────────────────────────
# Gatherer declarations
# ─────────────────────────────────────────────────────────────
class GatherMode(str, Enum):
    NAVIGATION = "navigation"
    TIMESPAN = "timespan"


class GathererMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    supported_modes: FrozenSet[GatherMode] = frozenset({GatherMode.NAVIGATION, GatherMode.TIMESPAN})
    dependencies: Dict[str, str] = Field(default_factory=dict)   # local name -> artifact name
    optional_dependencies: FrozenSet[str] = frozenset()           # local names tolerated as missing

    @model_validator(mode="after")
    def _optional_are_declared(self) -> "GathererMeta":
        unknown = set(self.optional_dependencies) - set(self.dependencies)
        if unknown:
            raise ValueError(f"optional_dependencies not declared in dependencies: {sorted(unknown)}")
        return self


class MissingArtifact(BaseModel):
    """Explicit marker for an optional artifact that could not be produced."""
    model_config = ConfigDict(frozen=True)

    name: str
    reason: str = ""

# ─────────────────────────────────────────────────────────────
# Artifact payloads
# ─────────────────────────────────────────────────────────────
class CompressionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    url: str
    mime_type: str = ""
    transfer_size: int
    resource_size: int
    gzip_size: Optional[int] = 0    # None when the estimate failed


class SourceMapResult(BaseModel):
    script_id: str
    script_url: str
    source_map_url: Optional[str] = None
    map: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _map_xor_error(self) -> "SourceMapResult":
        if (self.map is None) == (self.error_message is None):
            raise ValueError("exactly one of map / error_message must be set")
        return self


class FetchResponse(BaseModel):
    status: Optional[int] = None
    content: Optional[str] = None

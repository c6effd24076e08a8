from __future__ import annotations

from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

# ─────────────────────────────────────────────────────────────
# Raw protocol traffic
# ─────────────────────────────────────────────────────────────
class RawEvent(BaseModel):
    """One unit of the unprocessed stream: a sent command or a received event."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["command", "event"] = "event"
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float
    session_id: Optional[str] = None
    target_type: Optional[str] = None   # "page", "iframe", "worker"... for child sessions

# ─────────────────────────────────────────────────────────────
# Non-fatal issues (error sink + ArtifactSet.issues)
# ─────────────────────────────────────────────────────────────
class ErrorReport(BaseModel):
    component: str
    message: str
    url: Optional[str] = None
    severity: Literal["info", "warning", "error", "fatal"] = "warning"

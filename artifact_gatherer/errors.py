# artifact_gatherer/errors.py
from __future__ import annotations

from typing import Any, Optional


class GatherError(Exception):
    """Base class for every failure raised by the gathering engine."""


# ─────────────────────────────────────────────────────────────
# Session layer
# ─────────────────────────────────────────────────────────────
class ProtocolTimeout(GatherError):
    def __init__(self, method: str, timeout_ms: float):
        super().__init__(f"{method} timed out after {timeout_ms:g}ms")
        self.method = method
        self.timeout_ms = timeout_ms


class ProtocolError(GatherError):
    def __init__(self, method: str, code: Optional[int], message: str, data: Any = None):
        super().__init__(f"{method} failed: {message} ({code})")
        self.method = method
        self.code = code
        self.protocol_message = message
        self.data = data


class TargetCrashed(GatherError):
    def __init__(self, reason: str = "target crashed"):
        super().__init__(reason)
        self.reason = reason


class NavigationFailed(GatherError):
    def __init__(self, url: str, error_text: str):
        super().__init__(f"Navigation to {url} failed: {error_text}")
        self.url = url
        self.error_text = error_text


# ─────────────────────────────────────────────────────────────
# Cache layer
# ─────────────────────────────────────────────────────────────
class ArtifactMissing(GatherError):
    def __init__(self, name: str, reason: Optional[str] = None):
        super().__init__(f"Required artifact {name} is missing" + (f": {reason}" if reason else ""))
        self.name = name
        self.reason = reason


class ArtifactComputeFailed(GatherError):
    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Computing {name} failed: {cause}")
        self.name = name
        self.cause = cause


class DependencyCycle(GatherError):
    def __init__(self, path: list[str]):
        super().__init__("Dependency cycle: " + " -> ".join(path))
        self.path = path


# ─────────────────────────────────────────────────────────────
# Records & extractors (non-fatal, reported per record/script)
# ─────────────────────────────────────────────────────────────
class RecordIncomplete(GatherError):
    def __init__(self, request_id: str, url: str = ""):
        super().__init__(f"Request {request_id} never finished ({url})")
        self.request_id = request_id
        self.url = url


class SourceMapInvalid(GatherError):
    pass


class SourceMapFetchFailed(GatherError):
    pass


class CompressionEstimateFailed(GatherError):
    pass

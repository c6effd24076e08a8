from __future__ import annotations

from typing import Any, Dict, Iterator, List

from artifact_gatherer.errors import ArtifactMissing
from artifact_gatherer.models.artifacts import MissingArtifact
from artifact_gatherer.models.events import ErrorReport


class ArtifactSet:
    """Result of one run: produced values, per-artifact failures and non-fatal issues."""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self.errors: Dict[str, BaseException] = {}
        self.issues: List[ErrorReport] = []

    def set(self, name: str, value: Any) -> None:
        self.values[name] = value
        self.errors.pop(name, None)

    def fail(self, name: str, error: BaseException) -> None:
        self.errors[name] = error
        self.values.pop(name, None)

    def get(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        error = self.errors.get(name)
        return MissingArtifact(name=name, reason=str(error) if error else "not gathered")

    def require(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        error = self.errors.get(name)
        if error is None:
            raise ArtifactMissing(name, "not gathered")
        raise ArtifactMissing(name, str(error)) from error

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def as_dict(self) -> Dict[str, Any]:
        """Name -> value, with failed artifacts replaced by MissingArtifact markers."""
        out = dict(self.values)
        for name in self.errors:
            out[name] = self.get(name)
        return out

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from artifact_gatherer.gather.gatherers import DevtoolsLog, ResponseCompression, SourceMaps
from artifact_gatherer.gather.spi import BaseGatherer

GathererFactory = Callable[[], BaseGatherer]

# Built-in gatherers by artifact name, in declaration order
_DEFAULTS: Dict[str, GathererFactory] = {
    "DevtoolsLog": DevtoolsLog,
    "ResponseCompression": ResponseCompression,
    "SourceMaps": SourceMaps,
}

# Explicit overrides by artifact name (experiments/tests)
_OVERRIDES: Dict[str, GathererFactory] = {}


def register_override(name: str, factory: GathererFactory) -> None:
    _OVERRIDES[name] = factory


def clear_overrides() -> None:
    _OVERRIDES.clear()


def gatherer_for(name: str) -> BaseGatherer:
    factory = _OVERRIDES.get(name) or _DEFAULTS.get(name)
    if factory is None:
        raise LookupError(f"No gatherer registered for artifact '{name}'")
    return factory()


def build_gatherers(names: Optional[Iterable[str]] = None) -> List[BaseGatherer]:
    """Fresh instances for one run; gatherers hold per-run state."""
    return [gatherer_for(n) for n in (names or list(_DEFAULTS))]

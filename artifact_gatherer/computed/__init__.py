from artifact_gatherer.computed.cache import ComputedArtifact, ComputedArtifactCache
from artifact_gatherer.computed.network_records import DEFAULT_COMPUTED, NetworkRecords

__all__ = ["ComputedArtifact", "ComputedArtifactCache", "DEFAULT_COMPUTED", "NetworkRecords"]

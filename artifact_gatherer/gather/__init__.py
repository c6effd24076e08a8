from artifact_gatherer.gather.artifacts import ArtifactSet
from artifact_gatherer.gather.runner import GatherRunner, Phase
from artifact_gatherer.gather.spi import BaseGatherer, GatherContext

__all__ = ["ArtifactSet", "BaseGatherer", "GatherContext", "GatherRunner", "Phase"]

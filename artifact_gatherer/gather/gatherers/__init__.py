from artifact_gatherer.gather.gatherers.devtools_log import DevtoolsLog
from artifact_gatherer.gather.gatherers.response_compression import ResponseCompression
from artifact_gatherer.gather.gatherers.source_maps import SourceMaps

__all__ = ["DevtoolsLog", "ResponseCompression", "SourceMaps"]

from artifact_gatherer.network.records import NetworkRecordReconstructor

__all__ = ["NetworkRecordReconstructor"]

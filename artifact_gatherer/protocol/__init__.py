from artifact_gatherer.protocol.fetcher import Fetcher, fetch_response_body_from_cache
from artifact_gatherer.protocol.session import ProtocolSession

__all__ = ["Fetcher", "ProtocolSession", "fetch_response_body_from_cache"]

from artifact_gatherer.infra.error_sink import (
    CollectingErrorSink,
    ErrorSink,
    LoggingErrorSink,
    NullErrorSink,
    RabbitErrorSink,
    default_error_sink,
)
from artifact_gatherer.infra.transport import Transport, WebSocketTransport, discover_websocket_url

__all__ = [
    "CollectingErrorSink",
    "ErrorSink",
    "LoggingErrorSink",
    "NullErrorSink",
    "RabbitErrorSink",
    "Transport",
    "WebSocketTransport",
    "default_error_sink",
    "discover_websocket_url",
]

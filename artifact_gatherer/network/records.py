# artifact_gatherer/network/records.py
# Rebuilds request/response records from the Network.* event stream.
#
#   Sent -> HeadersReceived -> (DataReceived)* -> Finished | Failed
#   Sent --redirectResponse--> predecessor finished, renamed "<id>:redirect";
#                              the new record keeps <id> and points back.
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from artifact_gatherer.errors import RecordIncomplete
from artifact_gatherer.models.events import RawEvent
from artifact_gatherer.models.network import (
    NetworkRequest,
    classify_resource_type,
    headers_from_protocol,
)

logger = logging.getLogger(__name__)

REDIRECT_SUFFIX = ":redirect"


class NetworkRecordReconstructor:
    def __init__(self):
        self._records: List[NetworkRequest] = []
        self._by_id: Dict[str, NetworkRequest] = {}
        self._encoded_seen: Dict[int, int] = {}   # id(record) -> encoded bytes so far
        self._handlers: Dict[str, Callable[[RawEvent, Dict[str, Any]], None]] = {
            "Network.requestWillBeSent": self._on_request_will_be_sent,
            "Network.requestServedFromCache": self._on_served_from_cache,
            "Network.responseReceived": self._on_response_received,
            "Network.dataReceived": self._on_data_received,
            "Network.loadingFinished": self._on_loading_finished,
            "Network.loadingFailed": self._on_loading_failed,
        }

    @classmethod
    def from_events(cls, events: Iterable[RawEvent]) -> List[NetworkRequest]:
        reconstructor = cls()
        for event in events:
            reconstructor.dispatch(event)
        incomplete = reconstructor.incomplete()
        if incomplete:
            logger.info("%d request(s) never reached a terminal state", len(incomplete))
        return reconstructor.finalize()

    def dispatch(self, event: RawEvent) -> None:
        if event.kind != "event":
            return
        handler = self._handlers.get(event.name)
        if handler is not None:
            handler(event, event.payload)

    def finalize(self) -> List[NetworkRequest]:
        return list(self._records)

    def incomplete(self) -> List[RecordIncomplete]:
        return [
            RecordIncomplete(r.request_id, r.url)
            for r in self._records
            if not (r.finished or r.failed)
        ]

    # ---- helpers --------------------------------------------------------
    def _lookup(self, event: RawEvent, params: Dict[str, Any]) -> Optional[NetworkRequest]:
        record = self._by_id.get(self._key(event, params.get("requestId")))
        if record is None:
            logger.debug("%s for unknown request %s", event.name, params.get("requestId"))
        return record

    @staticmethod
    def _key(event: RawEvent, request_id: Optional[str]) -> str:
        # request ids are only unique per target
        return f"{event.session_id or ''}|{request_id}"

    @staticmethod
    def _is_terminal(record: NetworkRequest) -> bool:
        return record.finished or record.failed

    def _apply_response(self, record: NetworkRequest, response: Dict[str, Any], timestamp: float) -> None:
        record.status_code = int(response.get("status", record.status_code))
        record.mime_type = response.get("mimeType") or record.mime_type
        record.protocol = response.get("protocol") or record.protocol
        record.response_headers = headers_from_protocol(response.get("headers"))
        if response.get("requestHeaders"):
            record.request_headers = headers_from_protocol(response.get("requestHeaders"))
        record.from_disk_cache = bool(response.get("fromDiskCache")) or record.from_disk_cache
        record.response_headers_end_time = timestamp
        if response.get("encodedDataLength") is not None:
            self._encoded_seen[id(record)] = int(response["encodedDataLength"])

    # ---- event handlers -------------------------------------------------
    def _on_request_will_be_sent(self, event: RawEvent, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        if not request_id:
            return
        key = self._key(event, request_id)
        request = params.get("request") or {}
        timestamp = float(params.get("timestamp", event.timestamp))

        predecessor = self._by_id.get(key)
        redirect = params.get("redirectResponse")
        if predecessor is not None and redirect is not None:
            self._apply_response(predecessor, redirect, timestamp)
            predecessor.transfer_size = int(redirect.get("encodedDataLength") or self._encoded_seen.get(id(predecessor), 0))
            predecessor.finished = True
            predecessor.end_time = timestamp
            predecessor.request_id = self._redirected_id(event, request_id)
            self._by_id[self._key(event, predecessor.request_id)] = predecessor
        elif predecessor is not None:
            logger.debug("Duplicate requestWillBeSent for %s without redirect", request_id)
            return

        record = NetworkRequest(
            request_id=request_id,
            url=request.get("url", ""),
            method=request.get("method", "GET"),
            request_headers=headers_from_protocol(request.get("headers")),
            resource_type=classify_resource_type(params.get("type")),
            start_time=timestamp,
            frame_id=params.get("frameId"),
            session_id=event.session_id,
            is_out_of_process_iframe=event.target_type == "iframe",
            redirect_source=predecessor,
        )
        self._by_id[key] = record
        self._records.append(record)

    def _redirected_id(self, event: RawEvent, request_id: str) -> str:
        candidate = request_id + REDIRECT_SUFFIX
        while self._key(event, candidate) in self._by_id:
            candidate += REDIRECT_SUFFIX
        return candidate

    def _on_served_from_cache(self, event: RawEvent, params: Dict[str, Any]) -> None:
        record = self._lookup(event, params)
        if record is not None:
            record.from_memory_cache = True

    def _on_response_received(self, event: RawEvent, params: Dict[str, Any]) -> None:
        record = self._lookup(event, params)
        if record is None or self._is_terminal(record):
            return
        self._apply_response(record, params.get("response") or {}, float(params.get("timestamp", event.timestamp)))
        record.resource_type = classify_resource_type(params.get("type") or record.resource_type.value, record.mime_type)

    def _on_data_received(self, event: RawEvent, params: Dict[str, Any]) -> None:
        record = self._lookup(event, params)
        if record is None or self._is_terminal(record):
            return
        record.resource_size += int(params.get("dataLength") or 0)
        encoded = int(params.get("encodedDataLength") or 0)
        if encoded:
            self._encoded_seen[id(record)] = self._encoded_seen.get(id(record), 0) + encoded

    def _on_loading_finished(self, event: RawEvent, params: Dict[str, Any]) -> None:
        record = self._lookup(event, params)
        if record is None or self._is_terminal(record):
            return
        record.finished = True
        record.end_time = float(params.get("timestamp", event.timestamp))
        encoded = params.get("encodedDataLength")
        record.transfer_size = int(encoded) if encoded is not None else self._encoded_seen.get(id(record), 0)

    def _on_loading_failed(self, event: RawEvent, params: Dict[str, Any]) -> None:
        record = self._lookup(event, params)
        if record is None or self._is_terminal(record):
            return
        record.failed = True
        record.failure_text = params.get("errorText") or ("canceled" if params.get("canceled") else "")
        record.end_time = float(params.get("timestamp", event.timestamp))
        encoded = params.get("encodedDataLength")
        record.transfer_size = int(encoded) if encoded is not None else self._encoded_seen.get(id(record), 0)
        if params.get("type"):
            record.resource_type = classify_resource_type(params["type"], record.mime_type)

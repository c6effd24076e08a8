from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ResourceType(str, Enum):
    DOCUMENT = "Document"
    SCRIPT = "Script"
    STYLESHEET = "Stylesheet"
    XHR = "XHR"
    FETCH = "Fetch"
    EVENT_SOURCE = "EventSource"
    IMAGE = "Image"
    MEDIA = "Media"
    FONT = "Font"
    OTHER = "Other"


TEXT_RESOURCE_TYPES = frozenset({
    ResourceType.DOCUMENT,
    ResourceType.SCRIPT,
    ResourceType.STYLESHEET,
    ResourceType.XHR,
    ResourceType.FETCH,
    ResourceType.EVENT_SOURCE,
})

BINARY_MIME_PREFIXES = ("image", "audio", "video")

# secondary signal, only consulted when the protocol type is absent or Other
_MIME_HINTS = (
    ("text/html", ResourceType.DOCUMENT),
    ("application/xhtml", ResourceType.DOCUMENT),
    ("javascript", ResourceType.SCRIPT),
    ("ecmascript", ResourceType.SCRIPT),
    ("text/css", ResourceType.STYLESHEET),
    ("image/", ResourceType.IMAGE),
    ("audio/", ResourceType.MEDIA),
    ("video/", ResourceType.MEDIA),
    ("font/", ResourceType.FONT),
    ("application/font", ResourceType.FONT),
)


def classify_resource_type(protocol_type: Optional[str], mime_type: Optional[str] = None) -> ResourceType:
    try:
        rtype = ResourceType(protocol_type) if protocol_type else ResourceType.OTHER
    except ValueError:
        rtype = ResourceType.OTHER
    if rtype is not ResourceType.OTHER or not mime_type:
        return rtype
    mime = mime_type.lower()
    for hint, hinted in _MIME_HINTS:
        if hint in mime:
            return hinted
    return ResourceType.OTHER


def is_binary_mime_type(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith(BINARY_MIME_PREFIXES)


class Header(BaseModel):
    name: str
    value: str


def headers_from_protocol(headers: Optional[Dict[str, object]]) -> List[Header]:
    return [Header(name=str(k), value=str(v)) for k, v in (headers or {}).items()]


class NetworkRequest(BaseModel):
    request_id: str
    url: str = ""
    method: str = "GET"
    resource_type: ResourceType = ResourceType.OTHER
    mime_type: str = ""
    status_code: int = -1
    protocol: str = ""
    request_headers: List[Header] = Field(default_factory=list)
    response_headers: List[Header] = Field(default_factory=list)

    transfer_size: int = 0
    resource_size: int = 0

    finished: bool = False
    failed: bool = False
    failure_text: Optional[str] = None

    from_disk_cache: bool = False
    from_memory_cache: bool = False
    is_out_of_process_iframe: bool = False

    start_time: float = -1
    response_headers_end_time: float = -1
    end_time: float = -1

    frame_id: Optional[str] = None
    session_id: Optional[str] = None

    # predecessor in a redirect chain; never the reverse
    redirect_source: Optional["NetworkRequest"] = None

    def header(self, name: str) -> Optional[str]:
        lname = name.lower()
        for h in self.response_headers:
            if h.name.lower() == lname:
                return h.value
        return None

    def redirect_chain(self) -> List["NetworkRequest"]:
        chain: List[NetworkRequest] = []
        seen = {id(self)}
        src = self.redirect_source
        while src is not None and id(src) not in seen:
            seen.add(id(src))
            chain.append(src)
            src = src.redirect_source
        return chain


NetworkRequest.model_rebuild()

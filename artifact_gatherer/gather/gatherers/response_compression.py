# artifact_gatherer/gather/gatherers/response_compression.py
# Estimates gzip sizes for text responses that went over the wire without
# gzip/br/deflate content encoding.
from __future__ import annotations

import asyncio
import gzip
import logging
from typing import Callable, List, Optional, Sequence, Union

from artifact_gatherer.errors import CompressionEstimateFailed
from artifact_gatherer.gather.pool import bounded_map
from artifact_gatherer.gather.spi import BaseGatherer, GatherContext
from artifact_gatherer.models.artifacts import CompressionRecord, GathererMeta
from artifact_gatherer.models.events import ErrorReport
from artifact_gatherer.models.network import (
    TEXT_RESOURCE_TYPES,
    NetworkRequest,
    ResourceType,
    is_binary_mime_type,
)
from artifact_gatherer.network.urls import elide_data_uri
from artifact_gatherer.protocol.fetcher import fetch_response_body_from_cache

logger = logging.getLogger(__name__)

CHROME_EXTENSION_PROTOCOL = "chrome-extension:"
COMPRESSION_HEADERS = frozenset({
    "content-encoding",
    "x-original-content-encoding",
    "x-content-encoding-over-network",
})
COMPRESSION_TYPES = frozenset({"gzip", "br", "deflate"})

Compressor = Callable[[bytes], int]


def gzip_size(content: bytes) -> int:
    return len(gzip.compress(content))


def ineligibility_reason(record: NetworkRequest) -> Optional[str]:
    """Why a record is left out of compression analysis, or None when it is a candidate."""
    if record.is_out_of_process_iframe:
        return "out-of-process iframe"
    resource_type = record.resource_type or ResourceType.OTHER
    if is_binary_mime_type(record.mime_type) or resource_type not in TEXT_RESOURCE_TYPES:
        return "not a text resource"
    if not record.resource_size:
        return "empty resource"
    if not record.finished:
        return "not finished"
    if record.url.startswith(CHROME_EXTENSION_PROTOCOL):
        return "extension resource"
    if not record.transfer_size:
        return "no transfer size"
    if record.status_code == 304:
        return "not modified"
    for header in record.response_headers:
        if header.name.lower() in COMPRESSION_HEADERS and header.value in COMPRESSION_TYPES:
            return "already compressed"
    return None


class ResponseCompression(BaseGatherer):
    name = "ResponseCompression"
    meta = GathererMeta(dependencies={"DevtoolsLog": "DevtoolsLog"})

    def __init__(self, compressor: Compressor = gzip_size, concurrency: Optional[int] = None):
        self.compressor = compressor
        self.concurrency = concurrency

    @staticmethod
    def filter_unoptimized_responses(records: Sequence[NetworkRequest]) -> List[CompressionRecord]:
        out: List[CompressionRecord] = []
        for record in records:
            reason = ineligibility_reason(record)
            if reason is not None:
                logger.debug("Skipping %s: %s", elide_data_uri(record.url), reason)
                continue
            out.append(CompressionRecord(
                request_id=record.request_id,
                url=record.url,
                mime_type=record.mime_type,
                transfer_size=record.transfer_size,
                resource_size=record.resource_size,
                gzip_size=0,
            ))
        return out

    async def _estimate(self, ctx: GatherContext, record: CompressionRecord) -> CompressionRecord:
        try:
            content: Union[str, bytes, None] = await fetch_response_body_from_cache(ctx.session, record.request_id)
            if not content:
                return record
            data = content.encode("utf-8") if isinstance(content, str) else content
            size = await asyncio.to_thread(self.compressor, data)
            return record.model_copy(update={"gzip_size": size})
        except Exception as e:
            failure = CompressionEstimateFailed(f"Unable to get gzip size for {elide_data_uri(record.url)}: {e}")
            logger.warning("%s", failure)
            ctx.error_sink.report(ErrorReport(
                component=self.name,
                message=str(failure),
                url=elide_data_uri(record.url),
                severity="warning",
            ))
            return record.model_copy(update={"gzip_size": None})

    async def get_compressible_records(
        self, ctx: GatherContext, records: Sequence[NetworkRequest]
    ) -> List[CompressionRecord]:
        candidates = self.filter_unoptimized_responses(records)
        return await bounded_map(lambda r: self._estimate(ctx, r), candidates, limit=self.concurrency)

    async def get_artifact(self, ctx: GatherContext) -> List[CompressionRecord]:
        records = await ctx.computed.resolve("NetworkRecords")
        return await self.get_compressible_records(ctx, records)

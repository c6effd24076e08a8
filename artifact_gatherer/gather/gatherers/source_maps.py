# artifact_gatherer/gather/gatherers/source_maps.py
# Collects the source maps referenced by parsed scripts. Failures are reported
# per script as error_message; one bad map never hides the others.
from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import unquote_to_bytes

import orjson

from artifact_gatherer.config import settings
from artifact_gatherer.errors import SourceMapFetchFailed, SourceMapInvalid
from artifact_gatherer.gather.pool import bounded_map
from artifact_gatherer.gather.spi import BaseGatherer, GatherContext
from artifact_gatherer.models.artifacts import GathererMeta, SourceMapResult
from artifact_gatherer.network.urls import elide_data_uri, resolve_url

logger = logging.getLogger(__name__)


def decode_data_url(url: str) -> str:
    header, sep, data = url.partition(",")
    if not sep:
        raise SourceMapInvalid("Malformed data URL")
    if header.endswith(";base64"):
        raw = base64.b64decode(data)
    else:
        raw = unquote_to_bytes(data)
    return raw.decode("utf-8")


def parse_source_map(content: str) -> Dict[str, Any]:
    # strip the XSSI guard some servers prepend
    if content.startswith(")]}"):
        content = content.split("\n", 1)[1] if "\n" in content else ""
    try:
        parsed = orjson.loads(content)
    except orjson.JSONDecodeError as e:
        raise SourceMapInvalid(f"Map is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise SourceMapInvalid("Map is not a JSON object")
    return parsed


def validate_source_map(map_: Dict[str, Any]) -> Dict[str, Any]:
    version = map_.get("version")
    if not isinstance(version, (int, float)) or isinstance(version, bool):
        raise SourceMapInvalid("Map has no numeric `version` field")
    if not isinstance(map_.get("sources"), list):
        raise SourceMapInvalid("Map has no `sources` list")
    if not isinstance(map_.get("mappings"), str):
        raise SourceMapInvalid("Map has no `mappings` field")
    if isinstance(map_.get("sections"), list):
        map_ = {**map_, "sections": [s for s in map_["sections"] if isinstance(s, dict) and s.get("map")]}
    return map_


class SourceMaps(BaseGatherer):
    name = "SourceMaps"
    meta = GathererMeta()

    def __init__(self, concurrency: Optional[int] = None, fetch_timeout_ms: Optional[float] = None):
        self.concurrency = concurrency
        self.fetch_timeout_ms = settings.SOURCE_MAP_FETCH_TIMEOUT_MS if fetch_timeout_ms is None else fetch_timeout_ms
        self._script_parsed_events: List[Dict[str, Any]] = []

    def on_script_parsed(self, event: Dict[str, Any]) -> None:
        if event.get("sourceMapURL"):
            self._script_parsed_events.append(event)

    async def start_sensitive_instrumentation(self, ctx: GatherContext) -> None:
        ctx.session.on("Debugger.scriptParsed", self.on_script_parsed)
        await ctx.session.enable_domain("Debugger")

    async def stop_sensitive_instrumentation(self, ctx: GatherContext) -> None:
        try:
            await ctx.session.disable_domain("Debugger")
        finally:
            ctx.session.off("Debugger.scriptParsed", self.on_script_parsed)

    async def fetch_source_map(self, ctx: GatherContext, url: str) -> Dict[str, Any]:
        if ctx.fetcher is None:
            raise SourceMapFetchFailed("No fetcher available")
        try:
            response = await ctx.fetcher.fetch_resource(url, timeout_ms=self.fetch_timeout_ms)
        except Exception as e:
            raise SourceMapFetchFailed(f"Failed fetching source map: {e}") from e
        if response.content is None:
            raise SourceMapFetchFailed(f"Failed fetching source map ({response.status})")
        return parse_source_map(response.content)

    async def retrieve_map(self, ctx: GatherContext, event: Dict[str, Any]) -> SourceMapResult:
        script_id = str(event.get("scriptId", ""))
        script_url = event.get("url") or ""
        raw_url: str = event["sourceMapURL"]

        # sourceMapURL comes straight from the magic comment / SourceMap header
        is_data_url = raw_url.startswith("data:")
        resolved = raw_url if is_data_url else resolve_url(raw_url, script_url)
        if not resolved:
            return SourceMapResult(
                script_id=script_id,
                script_url=script_url,
                error_message=f"Could not resolve map url: {raw_url}",
            )

        # data URLs are not echoed back in the artifact
        source_map_url = None if is_data_url else resolved
        try:
            map_ = parse_source_map(decode_data_url(resolved)) if is_data_url else await self.fetch_source_map(ctx, resolved)
            map_ = validate_source_map(map_)
        except Exception as e:
            logger.info("Source map for %s unavailable: %s", elide_data_uri(script_url), e)
            return SourceMapResult(
                script_id=script_id,
                script_url=script_url,
                source_map_url=source_map_url,
                error_message=f"{type(e).__name__}: {e}",
            )
        return SourceMapResult(
            script_id=script_id,
            script_url=script_url,
            source_map_url=source_map_url,
            map=map_,
        )

    async def get_artifact(self, ctx: GatherContext) -> List[SourceMapResult]:
        events = list(self._script_parsed_events)
        return await bounded_map(lambda e: self.retrieve_map(ctx, e), events, limit=self.concurrency)

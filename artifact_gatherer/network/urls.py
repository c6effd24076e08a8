from __future__ import annotations

from typing import Optional
from urllib.parse import urljoin, urlsplit


def elide_data_uri(url: str, keep: int = 10) -> str:
    """Shortens `data:` URIs so they can be logged or reported."""
    if not url.startswith("data:"):
        return url
    comma = url.find(",")
    if comma < 0:
        return url[: 5 + keep] + "…"
    return url[: comma + 1 + keep] + "…"


def resolve_url(url: str, base: str) -> Optional[str]:
    """Absolute URL for `url` relative to `base`, or None when none can be formed."""
    try:
        joined = urljoin(base or "", url)
        parts = urlsplit(joined)
    except ValueError:
        return None
    if not parts.scheme:
        return None
    return joined

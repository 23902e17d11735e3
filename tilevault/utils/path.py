"""
Utilities for handling file paths, resource URLs, and HTTP header hygiene.
"""

import hashlib
from pathlib import Path
from typing import Mapping
from urllib.parse import urljoin, urlsplit

ARCHIVE_SUFFIX = ".pmtiles"

# Headers that describe a single connection and must never be stored or relayed.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers dropped when a full response is persisted; they are recomputed on serve.
_UNSTORED_HEADERS = HOP_BY_HOP_HEADERS | {
    "content-length",
    "content-range",
    "set-cookie",
}


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def blob_key(url: str) -> str:
    """Derives a filesystem-safe, collision-resistant key for a resource URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def is_absolute_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def resolve_resource_url(pm: str, base_url: str) -> str:
    """
    Resolves a ``pm`` value to an absolute archive URL.

    Values that already carry a scheme are used as-is; bare names such as
    ``CVL.pmtiles`` are resolved against the tiles base URL.
    """
    pm = pm.strip()
    if "://" in pm:
        return pm
    return urljoin(base_url, pm.lstrip("/"))


def region_code_from_pm(pm: str) -> str:
    """Extracts a region code from a ``pm`` value (``CVL.pmtiles`` -> ``CVL``)."""
    name = urlsplit(pm).path.rsplit("/", 1)[-1] if "://" in pm else pm
    return name.replace(ARCHIVE_SUFFIX, "")


def storable_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Filters response headers down to the ones worth persisting with a blob."""
    return {k: v for k, v in headers.items() if k.lower() not in _UNSTORED_HEADERS}


def forwardable_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Filters headers down to the end-to-end ones a proxy may relay."""
    return {
        k: v
        for k, v in headers.items()
        if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "host"
    }

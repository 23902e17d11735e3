"""
Loads the region catalogue (``regions.json``) from a local file or over HTTP.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from tilevault.exceptions import ConfigurationError, RegionNotFoundError
from tilevault.models.region import RegionDescriptor
from tilevault.utils.path import (
    is_absolute_url,
    region_code_from_pm,
    resolve_resource_url,
)

log = logging.getLogger(__name__)


def parse_catalogue(data: Any, base_url: str) -> list[RegionDescriptor]:
    """
    Validates a decoded catalogue document (``{"regions": [...]}``) and resolves
    each source URL against the tiles base URL.
    """
    if not isinstance(data, dict) or not isinstance(data.get("regions", []), list):
        raise ConfigurationError(
            "Region catalogue must be an object with a 'regions' list."
        )

    regions: list[RegionDescriptor] = []
    seen_codes: set[str] = set()
    for i, raw in enumerate(data.get("regions", [])):
        try:
            region = RegionDescriptor.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid region entry #{i}:\n{e}") from e
        if region.id in seen_codes:
            raise ConfigurationError(
                f"Duplicate region code '{region.id}' in catalogue."
            )
        seen_codes.add(region.id)
        if not is_absolute_url(region.source_url):
            region = region.model_copy(
                update={"source_url": resolve_resource_url(region.source_url, base_url)}
            )
        regions.append(region)
    return regions


def _read_local(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


async def _fetch_remote(url: str) -> Any:
    timeout = aiohttp.ClientTimeout(total=15)
    headers = {"Cache-Control": "no-store", "Pragma": "no-cache"}
    async with (
        aiohttp.ClientSession(timeout=timeout) as session,
        session.get(url, headers=headers) as resp,
    ):
        resp.raise_for_status()
        return await resp.json(content_type=None)


async def load_regions(source: str, base_url: str) -> list[RegionDescriptor]:
    """
    Loads the catalogue from ``source``, a filesystem path or an http(s) URL.

    Raises:
        ConfigurationError: If the catalogue is missing, unreachable, or invalid.
    """
    try:
        if is_absolute_url(source):
            data = await _fetch_remote(source)
        else:
            data = await asyncio.to_thread(_read_local, Path(source).expanduser())
    except FileNotFoundError as e:
        raise ConfigurationError(f"Region catalogue not found at '{source}'.") from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ConfigurationError(
            f"Could not fetch region catalogue '{source}': {e}"
        ) from e
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigurationError(
            f"Could not read region catalogue '{source}': {e}"
        ) from e

    regions = parse_catalogue(data, base_url)
    log.debug(f"Loaded {len(regions)} regions from '{source}'.")
    return regions


def find_region(regions: list[RegionDescriptor], code: str) -> RegionDescriptor:
    """Looks up a region by code (case-insensitive)."""
    wanted = code.strip().lower()
    for region in regions:
        if region.id.lower() == wanted:
            return region
    raise RegionNotFoundError(f"Unknown region code '{code}'.")


def region_from_pm(
    regions: list[RegionDescriptor], pm: str | None
) -> RegionDescriptor | None:
    """Maps a ``pm`` parameter (``CVL.pmtiles`` or a full URL) to its region."""
    if not pm:
        return None
    code = region_code_from_pm(pm)
    return next((r for r in regions if r.id == code), None)

"""
Serves HTTP partial-content responses from a payload cached as a full 200
response.

The origin fetch never carried a Range header, so the cache holds the whole
object; ranges are cut from it on demand. Slicing operates on memoryviews and
never copies the payload.
"""

import re
from dataclasses import dataclass, field
from typing import Mapping

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Single-range byte grammar only; anything else is served as the full object.
_RANGE_RE = re.compile(r"^bytes=(\d+)-(\d*)$", re.IGNORECASE)


@dataclass
class TileResponse:
    """A response produced from the cache, ready to be written to a client."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: memoryview = field(default_factory=lambda: memoryview(b""))

    @property
    def reason(self) -> str:
        return {
            200: "OK",
            206: "Partial Content",
            416: "Range Not Satisfiable",
        }.get(self.status, "")

    def release(self) -> None:
        """Releases the body view so the underlying mapping can be closed."""
        self.body.release()


def parse_range(range_header: str | None) -> tuple[int, int | None] | None:
    """
    Parses ``bytes=<start>-[<end>]``.

    Returns ``(start, end)`` with ``end`` None when omitted, or None when the
    header is absent or does not conform.
    """
    if not range_header:
        return None
    match = _RANGE_RE.match(range_header.strip())
    if not match:
        return None
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else None
    return start, end


def _header(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def _without(headers: Mapping[str, str], *names: str) -> dict[str, str]:
    dropped = {n.lower() for n in names}
    return {k: v for k, v in headers.items() if k.lower() not in dropped}


def full_response(payload: memoryview, headers: Mapping[str, str]) -> TileResponse:
    """The cached object as-is, advertising range support."""
    out = _without(headers, "Content-Length", "Content-Range", "Accept-Ranges")
    out["Accept-Ranges"] = "bytes"
    out["Content-Length"] = str(len(payload))
    if _header(out, "Content-Type") is None:
        out["Content-Type"] = DEFAULT_CONTENT_TYPE
    return TileResponse(status=200, headers=out, body=payload[:])


def virtualize_range(
    payload: memoryview | bytes,
    headers: Mapping[str, str],
    range_header: str | None,
) -> TileResponse:
    """
    Builds the response an origin server would give for ``range_header``.

    Args:
        payload: The full cached object.
        headers: The headers stored with the original full response.
        range_header: The request's Range header value, if any.

    Returns:
        A 200 (no usable Range), 206 (satisfiable) or 416 (start past the end)
        response whose body is a zero-copy view into ``payload``.
    """
    view = payload if isinstance(payload, memoryview) else memoryview(payload)
    parsed = parse_range(range_header)
    if parsed is None:
        return full_response(view, headers)

    total = len(view)
    start, end = parsed

    if start >= total:
        return TileResponse(
            status=416,
            headers={
                "Content-Range": f"bytes */{total}",
                "Content-Length": "0",
                "Accept-Ranges": "bytes",
            },
        )

    if end is None or end >= total:
        end = total - 1
    if end < start:
        end = start

    out = _without(
        headers, "Content-Length", "Content-Range", "Accept-Ranges", "Content-Type"
    )
    out["Content-Type"] = _header(headers, "Content-Type") or DEFAULT_CONTENT_TYPE
    out["Accept-Ranges"] = "bytes"
    out["Content-Range"] = f"bytes {start}-{end}/{total}"
    out["Content-Length"] = str(end - start + 1)
    return TileResponse(status=206, headers=out, body=view[start : end + 1])

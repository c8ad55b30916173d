"""Source fetching: obtain each scanner payload's raw bytes, inline or over HTTP."""

import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any, NamedTuple

import httpx

from prism.schemas.correlate import ScanPayloadIn
from prism.schemas.findings import ScanSource

if TYPE_CHECKING:
    from prism.core.config import Settings

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[bytes | str]]


class SourceFetchError(Exception):
    """Raised when a scan payload cannot be retrieved (transport error, non-200, too large)."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class SourceFetch(NamedTuple):
    """One pending payload: which source it belongs to and how to get its bytes."""

    source: ScanSource
    fetch: Fetcher
    origin: str = "inline"


def inline_fetch(payload: Any) -> Fetcher:
    """Fetcher for a payload already decoded from the request body."""

    async def _fetch() -> str:
        return json.dumps(payload)

    return _fetch


def text_fetch(raw: str | bytes) -> Fetcher:
    """Fetcher for unparsed payload text."""

    async def _fetch() -> str | bytes:
        return raw

    return _fetch


def http_fetch(
    url: str,
    max_bytes: int,
    timeout_sec: float,
    client: httpx.AsyncClient | None = None,
) -> Fetcher:
    """
    Fetcher that GETs url. Anything but 200, a transport error, or a body larger than
    max_bytes raises SourceFetchError.
    """

    async def _download(c: httpx.AsyncClient) -> bytes:
        async with c.stream("GET", url) as response:
            if response.status_code != 200:
                raise SourceFetchError(f"GET {url} returned status {response.status_code}")
            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > max_bytes:
                    raise SourceFetchError(f"Payload at {url} exceeds {max_bytes} bytes")
            return bytes(body)

    async def _fetch() -> bytes:
        try:
            if client is not None:
                return await _download(client)
            async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec)) as c:
                return await _download(c)
        except httpx.TimeoutException as e:
            raise SourceFetchError(f"GET {url} timed out", cause=e) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(f"GET {url} failed: {e!s}", cause=e) from e

    return _fetch


def build_fetches(
    scan_payloads: Iterable[ScanPayloadIn],
    settings: "Settings",
    client: httpx.AsyncClient | None = None,
) -> list[SourceFetch]:
    """Turn request scan payloads into fetchers, preserving request order."""
    fetches: list[SourceFetch] = []
    for item in scan_payloads:
        if item.url is not None:
            url = str(item.url)
            fetches.append(
                SourceFetch(
                    item.source,
                    http_fetch(url, settings.MAX_PAYLOAD_BYTES, settings.SOURCE_FETCH_TIMEOUT_SEC, client),
                    url,
                )
            )
        elif item.raw is not None:
            fetches.append(SourceFetch(item.source, text_fetch(item.raw), "raw"))
        else:
            fetches.append(SourceFetch(item.source, inline_fetch(item.payload), "inline"))
    return fetches

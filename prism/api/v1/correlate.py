"""Correlate endpoint: parse SBOMs, fetch and normalize scan payloads, correlate, cache the result."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from prism.api.v1.auth import require_submitter
from prism.api.v1.deps import get_result_cache
from prism.core.config import get_settings
from prism.schemas.auth import CurrentUser
from prism.schemas.correlate import CorrelateRequest
from prism.schemas.results import ScanTargetResult
from prism.services.fetch import build_fetches
from prism.services.pipeline import correlate
from prism.services.result_cache import ResultCache
from prism.services.sbom import MalformedSbom, parse_sboms

router = APIRouter()


@router.post("", response_model=ScanTargetResult, status_code=status.HTTP_201_CREATED)
async def post_correlate(
    body: CorrelateRequest,
    cache: Annotated[ResultCache, Depends(get_result_cache)],
    _user: Annotated[CurrentUser, Depends(require_submitter)],
) -> ScanTargetResult:
    """
    Correlate one scan target and store the result as its newest version.

    Sources that cannot be fetched or parsed are reported in summary.source_status and
    summary.failed_sources; the response is still 201 with summary.partial=true.
    """
    settings = get_settings()
    if len(body.scan_payloads) > settings.MAX_SCAN_PAYLOADS_PER_REQUEST:
        raise HTTPException(
            status_code=422,
            detail=f"At most {settings.MAX_SCAN_PAYLOADS_PER_REQUEST} scan payloads are allowed per request.",
        )
    try:
        components = parse_sboms(body.sboms)
    except MalformedSbom as e:
        raise HTTPException(status_code=422, detail=e.message) from e

    result = await correlate(
        body.target_key,
        components,
        build_fetches(body.scan_payloads, settings),
        timeout=settings.SOURCE_FETCH_TIMEOUT_SEC,
        top_n=settings.HOT_LIST_TOP_N,
        scanned_at=body.scanned_at,
    )
    await run_in_threadpool(cache.put, body.target_key, result)
    return result

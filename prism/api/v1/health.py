"""Health endpoint for load balancers: reports whether the result store answers."""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from prism.api.v1.deps import get_result_cache
from prism.core.config import settings
from prism.schemas.findings import SCAN_SOURCES
from prism.schemas.health import HealthResponse
from prism.services.result_cache import ResultCache

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def get_health(cache: Annotated[ResultCache, Depends(get_result_cache)]) -> HealthResponse:
    reachable = await run_in_threadpool(cache.is_reachable)
    return HealthResponse(
        status="ok" if reachable else "degraded",
        environment=settings.APP_ENV,
        result_store="reachable" if reachable else "unreachable",
        sources=list(SCAN_SOURCES),
        hot_list_top_n=settings.HOT_LIST_TOP_N,
    )

"""Current result per scan target."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from prism.api.v1.auth import get_current_user
from prism.api.v1.deps import get_result_cache
from prism.schemas.auth import CurrentUser
from prism.schemas.results import ScanTargetResult
from prism.services.result_cache import ResultCache

router = APIRouter()


@router.get("/{target_key:path}", response_model=ScanTargetResult)
def get_result(
    target_key: str,
    cache: Annotated[ResultCache, Depends(get_result_cache)],
    _user: Annotated[CurrentUser, Depends(get_current_user)],
) -> ScanTargetResult:
    """Return the most recent result for target_key (image digest/tag or repo@commit)."""
    result = cache.get(target_key)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No result for target {target_key!r}")
    return result

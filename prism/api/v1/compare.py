"""Compare the current result for a target with the version before it."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from prism.api.v1.auth import get_current_user
from prism.api.v1.deps import get_result_cache
from prism.schemas.auth import CurrentUser
from prism.schemas.results import ResultComparison
from prism.services.compare import compare_results
from prism.services.result_cache import ResultCache

router = APIRouter()


@router.get("/{target_key:path}", response_model=ResultComparison)
def get_comparison(
    target_key: str,
    cache: Annotated[ResultCache, Depends(get_result_cache)],
    _user: Annotated[CurrentUser, Depends(get_current_user)],
) -> ResultComparison:
    versions = cache.history(target_key, 2)
    if not versions:
        raise HTTPException(status_code=404, detail=f"No result for target {target_key!r}")
    previous = versions[1] if len(versions) > 1 else None
    return compare_results(previous, versions[0])

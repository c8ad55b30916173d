"""Stored result versions per scan target, newest first."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from prism.api.v1.auth import get_current_user
from prism.api.v1.deps import get_result_cache
from prism.core.config import get_settings
from prism.schemas.auth import CurrentUser
from prism.schemas.results import HistoryResponse
from prism.services.result_cache import ResultCache

router = APIRouter()


@router.get("/{target_key:path}", response_model=HistoryResponse)
def get_history(
    target_key: str,
    cache: Annotated[ResultCache, Depends(get_result_cache)],
    _user: Annotated[CurrentUser, Depends(get_current_user)],
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> HistoryResponse:
    """Return up to limit results (default HISTORY_DEFAULT_LIMIT); empty when the target is unknown."""
    if limit is None:
        limit = get_settings().HISTORY_DEFAULT_LIMIT
    return HistoryResponse(target_key=target_key, results=cache.history(target_key, limit))

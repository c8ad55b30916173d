"""Shared dependencies for v1 routes."""

from functools import lru_cache

from prism.core.database import SessionLocal
from prism.services.result_cache import ResultCache, SqlResultStore


@lru_cache
def get_result_cache() -> ResultCache:
    """Process-wide cache so per-target write locks are shared by all requests."""
    return ResultCache(SqlResultStore(SessionLocal))

"""API v1 routes."""

from fastapi import APIRouter

from prism.api.v1 import auth, compare, correlate, health, history, results

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(correlate.router, prefix="/correlate", tags=["correlate"])
router.include_router(results.router, prefix="/results", tags=["results"])
router.include_router(history.router, prefix="/history", tags=["history"])
router.include_router(compare.router, prefix="/compare", tags=["compare"])

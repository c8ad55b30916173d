"""FastAPI application for the correlation engine: wiring, CORS and API metadata only."""

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prism.api.v1 import router as v1_router
from prism.core.config import settings

OPENAPI_TAGS = [
    {"name": "correlate", "description": "Normalize, match and merge scanner payloads against SBOMs."},
    {"name": "results", "description": "Current correlated result per scan target."},
    {"name": "history", "description": "Append-only result versions per scan target, newest first."},
    {"name": "compare", "description": "New, resolved and re-rated vulnerabilities since the previous result."},
    {"name": "auth", "description": "Bearer tokens for scanner and viewer accounts."},
    {"name": "health", "description": "Liveness and result-store reachability."},
]

app = FastAPI(
    title="Prism API",
    description="Vulnerability correlation and component matching across container, source, advisory and static scans.",
    version="0.1.0",
    openapi_tags=OPENAPI_TAGS,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "prism", "api": settings.API_V1_PREFIX, "docs": "/docs"}

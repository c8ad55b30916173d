"""Health response: service status plus result-store reachability."""

from typing import Literal

from pydantic import BaseModel, Field

from prism.schemas.findings import ScanSource


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"] = Field(
        default="ok",
        description="degraded when the result store cannot be reached; correlation still runs but is not cached.",
    )
    environment: str = Field(description="Current app environment (e.g. dev, prod)")
    result_store: Literal["reachable", "unreachable"]
    sources: list[ScanSource] = Field(default_factory=list, description="Scan sources this service can normalize.")
    hot_list_top_n: int = Field(..., ge=1)

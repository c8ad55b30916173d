"""Pydantic request/response schemas."""

from prism.schemas.correlate import CorrelateRequest, ScanPayloadIn
from prism.schemas.findings import (
    Component,
    ComponentRef,
    CorrelatedVulnerability,
    Finding,
    MatchedFinding,
    ScanSource,
    SeverityLevel,
)
from prism.schemas.health import HealthResponse
from prism.schemas.results import (
    HistoryResponse,
    HotComponent,
    ResultComparison,
    ScanTargetResult,
    SeverityBreakdown,
    SeverityChange,
    SourceStatus,
    Summary,
)

__all__ = [
    "Component",
    "ComponentRef",
    "CorrelateRequest",
    "CorrelatedVulnerability",
    "Finding",
    "HealthResponse",
    "HistoryResponse",
    "HotComponent",
    "MatchedFinding",
    "ResultComparison",
    "ScanPayloadIn",
    "ScanSource",
    "ScanTargetResult",
    "SeverityBreakdown",
    "SeverityChange",
    "SeverityLevel",
    "SourceStatus",
    "Summary",
]

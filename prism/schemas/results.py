"""Schemas for per-target correlation results: source status, summary, cached result, comparison."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from prism.schemas.findings import ComponentRef, CorrelatedVulnerability, ScanSource, SeverityLevel


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SourceStatus(BaseModel):
    """Outcome of one source for one correlation run."""

    source: ScanSource
    scanned: bool = Field(default=True, description="A payload was supplied for this source.")
    scan_failed: bool = Field(
        default=False,
        description="The payload could not be fetched or parsed; its findings are missing.",
    )
    no_findings: bool = Field(
        default=False,
        description="The source was scanned and reported zero findings (a clean scan).",
    )
    finding_count: int = Field(default=0, ge=0, description="Findings normalized from this source.")
    error: str | None = Field(default=None, description="Failure reason when scan_failed is true.")


class SeverityBreakdown(BaseModel):
    """Count per canonical severity."""

    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    low: int = Field(default=0, ge=0)


class HotComponent(BaseModel):
    """A component ranked for remediation priority."""

    component: ComponentRef
    vulnerability_count: int = Field(..., ge=1)
    score: int = Field(..., ge=0, description="critical*1000 + high*100 + medium*10 + low.")
    by_severity: SeverityBreakdown


class Summary(BaseModel):
    """Aggregated counts over one target's correlated vulnerabilities."""

    total: int = Field(..., ge=0, description="Number of correlated vulnerabilities.")
    by_severity: SeverityBreakdown
    per_component: dict[str, int] = Field(
        default_factory=dict,
        description="Component key (name@version) -> vulnerability count.",
    )
    unattributed: int = Field(default=0, ge=0, description="Vulnerabilities with no component.")
    fix_available_count: int = Field(default=0, ge=0)
    hot_list: list[HotComponent] = Field(default_factory=list)
    partial: bool = Field(
        default=False,
        description="True when at least one source failed; results are incomplete.",
    )
    failed_sources: list[ScanSource] = Field(default_factory=list)
    source_status: list[SourceStatus] = Field(default_factory=list)
    finding_count: int = Field(default=0, ge=0, description="Normalized findings before merging.")
    matched_finding_count: int = Field(default=0, ge=0)
    unmatched_finding_count: int = Field(default=0, ge=0)
    license_summary: dict[str, int] = Field(
        default_factory=dict,
        description="License category -> number of SBOM components whose most restrictive license falls in it.",
    )


class ScanTargetResult(BaseModel):
    """Cached, versioned correlation output for one scan target."""

    target_key: str = Field(..., min_length=1, description="Image digest/tag or repo commit.")
    scanned_at: datetime = Field(..., description="When the scan completed (UTC).")
    correlated_vulnerabilities: list[CorrelatedVulnerability] = Field(
        default_factory=list,
        description="Ordered by severity desc, then canonical_id asc.",
    )
    summary: Summary
    content_hash: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 over vulnerabilities and summary; equal for identical input.",
    )

    @field_validator("scanned_at")
    @classmethod
    def scanned_at_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC; aware ones are converted to UTC."""
        return as_utc(v)


class SeverityChange(BaseModel):
    canonical_id: str
    previous: SeverityLevel
    current: SeverityLevel


class ResultComparison(BaseModel):
    """Difference between the current result for a target and the one before it."""

    target_key: str
    current_scanned_at: datetime
    previous_scanned_at: datetime | None = None
    changed: bool = Field(..., description="False when both results have the same content hash.")
    new: list[str] = Field(default_factory=list, description="Canonical IDs only in the current result.")
    resolved: list[str] = Field(default_factory=list, description="Canonical IDs only in the previous result.")
    severity_changed: list[SeverityChange] = Field(default_factory=list)
    unchanged_count: int = Field(default=0, ge=0)


class HistoryResponse(BaseModel):
    """Stored results for a target, newest first."""

    target_key: str
    results: list[ScanTargetResult] = Field(default_factory=list)

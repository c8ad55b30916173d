"""Pydantic schemas for normalized findings, SBOM components and correlated vulnerabilities."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SeverityLevel = Literal["critical", "high", "medium", "low"]
ScanSource = Literal["container-scan", "source-scan", "advisory-db", "static-analysis"]

SEVERITY_VALUES: frozenset[str] = frozenset({"critical", "high", "medium", "low"})
SCAN_SOURCES: tuple[ScanSource, ...] = (
    "container-scan",
    "source-scan",
    "advisory-db",
    "static-analysis",
)

LicenseCategory = Literal["permissive", "weak_copyleft", "strong_copyleft", "proprietary", "unknown"]
LICENSE_CATEGORIES: tuple[LicenseCategory, ...] = (
    "permissive",
    "weak_copyleft",
    "strong_copyleft",
    "proprietary",
    "unknown",
)

# Higher rank = more severe.
SEVERITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}


def _validate_cvss(value: float | None) -> float | None:
    """Ensure CVSS score is in [0, 10] when present."""
    if value is None:
        return None
    if not 0 <= value <= 10:
        raise ValueError("cvss_score must be between 0 and 10")
    return value


def max_severity(severities: "list[str] | tuple[str, ...]") -> SeverityLevel:
    """Return the most severe level in the sequence (low when empty)."""
    worst: SeverityLevel = "low"
    for s in severities:
        if SEVERITY_RANK.get(s, -1) > SEVERITY_RANK[worst]:
            worst = s  # type: ignore[assignment]
    return worst


class Finding(BaseModel):
    """One vulnerability report line from one scanning source, after normalization."""

    model_config = ConfigDict(frozen=True)

    source: ScanSource = Field(..., description="Scanner family that produced this finding.")
    source_finding_id: str = Field(
        ...,
        description="Source-local identifier (advisory ID, rule ID, ...).",
    )
    advisory_id: str | None = Field(
        default=None,
        description="Canonical advisory identifier (CVE preferred), absent for non-advisory findings.",
    )
    aliases: tuple[str, ...] = Field(
        default=(),
        description="Other advisory identifiers reported for the same issue.",
    )
    package_name: str = Field(
        default="",
        description="Package name as reported by the scanner; empty for file-level findings.",
    )
    package_version: str | None = Field(default=None, description="Installed version as reported.")
    package_url: str | None = Field(default=None, description="Package URL when the scanner reports one.")
    location: str = Field(default="", description="Affected file path for static-analysis findings.")
    severity: SeverityLevel = Field(..., description="Canonical severity.")
    severity_unknown: bool = Field(
        default=False,
        description="True when the reported severity was not recognized and defaulted to low.",
    )
    title: str = Field(default="", description="Short title of the issue.")
    description: str = Field(default="", description="Long description of the issue.")
    references: tuple[str, ...] = Field(default=(), description="Reference URLs in reported order.")
    fixed_version: str | None = Field(
        default=None,
        description="First version containing a fix; absent when none is known.",
    )
    cvss_score: float | None = Field(default=None, ge=0, le=10, description="CVSS score 0.0-10.0.")
    cwe_ids: tuple[str, ...] = Field(default=(), description="Associated CWE identifiers.")

    @field_validator("cvss_score")
    @classmethod
    def validate_cvss_if_present(cls, v: float | None) -> float | None:
        return _validate_cvss(v)

    @property
    def subject(self) -> str:
        """What the finding is about: the package name, else the file location."""
        return self.package_name or self.location


class Component(BaseModel):
    """One software unit listed in an SBOM."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Component name.")
    version: str = Field(default="", description="Component version; empty when the SBOM omits it.")
    package_url: str | None = Field(default=None, description="Ecosystem-qualified purl.")
    type: str = Field(default="library", description="library, framework, application, container, ...")
    licenses: tuple[str, ...] = Field(default=(), description="Sorted license identifiers.")
    bom_ref: str | None = Field(default=None, description="SBOM-local reference, when present.")

    def ref(self) -> "ComponentRef":
        return ComponentRef(name=self.name, version=self.version, package_url=self.package_url)


class ComponentRef(BaseModel):
    """Identity of the SBOM component a vulnerability is attributed to."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = ""
    package_url: str | None = None

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


class MatchedFinding(BaseModel):
    """A finding plus the component the matcher attributed it to (None when unattributed)."""

    model_config = ConfigDict(frozen=True)

    finding: Finding
    component_ref: ComponentRef | None = None
    match_rule: str | None = Field(
        default=None,
        description="Name of the matching rule that produced component_ref.",
    )


class CorrelatedVulnerability(BaseModel):
    """One underlying vulnerability, merged from every finding that reports it."""

    model_config = ConfigDict(frozen=True)

    canonical_id: str = Field(
        ...,
        min_length=1,
        description="Advisory ID when present, else a stable hash of subject and title.",
    )
    component_ref: ComponentRef | None = Field(
        default=None,
        description="Primary component; None means unattributed (kept, never dropped).",
    )
    affected_components: tuple[ComponentRef, ...] = Field(
        default=(),
        description="Every distinct component the merged findings were attributed to.",
    )
    severity: SeverityLevel = Field(..., description="Maximum severity across merged findings.")
    severity_unknown: bool = Field(
        default=False,
        description="True only when no merged finding reported a recognized severity.",
    )
    sources: tuple[ScanSource, ...] = Field(..., min_length=1, description="Contributing sources, sorted.")
    fix_available: bool = Field(default=False, description="True if any merged finding has a fixed version.")
    fixed_versions: tuple[str, ...] = Field(default=(), description="Distinct fixed versions, sorted.")
    title: str = Field(default="", description="Representative title.")
    description: str = Field(default="", description="Representative description.")
    references: tuple[str, ...] = Field(default=(), description="Union of reference URLs, sorted.")
    aliases: tuple[str, ...] = Field(default=(), description="Union of advisory aliases, sorted.")
    cwe_ids: tuple[str, ...] = Field(default=(), description="Union of CWE identifiers, sorted.")
    cvss_score: float | None = Field(default=None, ge=0, le=10, description="Highest reported CVSS score.")
    package_name: str = Field(default="", description="Representative package name as reported.")
    package_version: str | None = Field(default=None, description="Representative package version.")
    source_finding_ids: tuple[str, ...] = Field(default=(), description="Source-local IDs, sorted.")
    finding_count: int = Field(..., ge=1, description="Number of findings merged into this vulnerability.")

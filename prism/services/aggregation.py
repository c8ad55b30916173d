"""
Severity aggregation: counts per severity and per component, plus the remediation hot list.

Hot-list score weights each severity an order of magnitude above the next, so a single
critical outranks any realistic number of highs. A vulnerability merged across several
components counts once toward each of them; totals and by_severity count it once.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping

from prism.schemas.findings import Component, ComponentRef, CorrelatedVulnerability
from prism.schemas.results import HotComponent, SeverityBreakdown, SourceStatus, Summary
from prism.services.licenses import license_summary

SEVERITY_WEIGHTS: dict[str, int] = {"critical": 1000, "high": 100, "medium": 10, "low": 1}
DEFAULT_TOP_N = 5


def severity_score(breakdown: SeverityBreakdown) -> int:
    return sum(getattr(breakdown, level) * weight for level, weight in SEVERITY_WEIGHTS.items())


def _breakdown(vulnerabilities: Iterable[CorrelatedVulnerability]) -> SeverityBreakdown:
    counts = {level: 0 for level in SEVERITY_WEIGHTS}
    for v in vulnerabilities:
        counts[v.severity] += 1
    return SeverityBreakdown(**counts)


def attributed_components(vulnerability: CorrelatedVulnerability) -> set[ComponentRef]:
    """Every component the vulnerability was matched to (primary ref included)."""
    refs = set(vulnerability.affected_components)
    if vulnerability.component_ref is not None:
        refs.add(vulnerability.component_ref)
    return refs


def hot_list(correlated: Iterable[CorrelatedVulnerability], top_n: int = DEFAULT_TOP_N) -> list[HotComponent]:
    """Components ranked by score desc, vulnerability count desc, component key asc."""
    by_component: defaultdict[ComponentRef, list[CorrelatedVulnerability]] = defaultdict(list)
    for v in correlated:
        for ref in attributed_components(v):
            by_component[ref].append(v)

    ranked: list[HotComponent] = []
    for ref, vulns in by_component.items():
        breakdown = _breakdown(vulns)
        ranked.append(
            HotComponent(
                component=ref,
                vulnerability_count=len(vulns),
                score=severity_score(breakdown),
                by_severity=breakdown,
            )
        )
    ranked.sort(key=lambda h: (-h.score, -h.vulnerability_count, h.component.key, h.component.package_url or ""))
    return ranked[: max(top_n, 0)]


def aggregate(
    correlated: Iterable[CorrelatedVulnerability],
    top_n: int = DEFAULT_TOP_N,
    source_statuses: Iterable[SourceStatus] | None = None,
    match_stats: Mapping[str, int] | None = None,
    components: Iterable[Component] | None = None,
) -> Summary:
    """
    Summarize correlated vulnerabilities for one target.

    source_statuses drives partial/failed_sources; match_stats may carry finding_count,
    matched_finding_count and unmatched_finding_count from the matching stage; components
    (the SBOM) feed the license summary.
    """
    vulnerabilities = list(correlated)
    statuses = sorted(source_statuses or [], key=lambda s: s.source)
    stats = match_stats or {}

    per_component: defaultdict[str, int] = defaultdict(int)
    unattributed = 0
    for v in vulnerabilities:
        refs = attributed_components(v)
        if not refs:
            unattributed += 1
        for key in {ref.key for ref in refs}:
            per_component[key] += 1

    failed = sorted({s.source for s in statuses if s.scan_failed})
    return Summary(
        total=len(vulnerabilities),
        by_severity=_breakdown(vulnerabilities),
        per_component=dict(sorted(per_component.items())),
        unattributed=unattributed,
        fix_available_count=sum(1 for v in vulnerabilities if v.fix_available),
        hot_list=hot_list(vulnerabilities, top_n),
        partial=bool(failed),
        failed_sources=failed,
        source_status=statuses,
        finding_count=stats.get("finding_count", 0),
        matched_finding_count=stats.get("matched_finding_count", 0),
        unmatched_finding_count=stats.get("unmatched_finding_count", 0),
        license_summary=license_summary(components or []),
    )

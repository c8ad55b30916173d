"""Merge matched findings that describe the same vulnerability into CorrelatedVulnerability records.

Two findings share a group when they carry the same advisory ID, or when neither has one
and they concern the same component (or, unattributed, the same package/file) with the same
normalized title. Every merged field is derived from the group as a set, so the output does
not depend on the order findings arrive in.
"""

import hashlib
from collections import Counter, defaultdict
from collections.abc import Iterable

from prism.schemas.findings import (
    SEVERITY_RANK,
    ComponentRef,
    CorrelatedVulnerability,
    MatchedFinding,
    max_severity,
)
from prism.services.purl import normalize_package_name

# Prefix for canonical IDs of findings that have no advisory identifier.
HASHED_ID_PREFIX = "PRISM-"
_HASHED_ID_HEX_LENGTH = 16

GroupKey = tuple[str, str, str]


def normalize_title(title: str | None) -> str:
    """Case-insensitive, whitespace-collapsed title used for grouping."""
    if not title:
        return ""
    return " ".join(title.lower().split())


def _ref_sort_key(ref: ComponentRef) -> tuple[str, str]:
    return (ref.key, ref.package_url or "")


def _subject_key(item: MatchedFinding) -> str:
    """Component identity, or for unattributed findings the normalized package name / file path."""
    if item.component_ref is not None:
        ref = item.component_ref
        return f"component:{ref.key}|{ref.package_url or ''}"
    finding = item.finding
    if finding.package_name:
        return f"package:{normalize_package_name(finding.package_name)}"
    path = finding.location.strip().replace("\\", "/").lower()
    return f"file:{path}"


def group_key(item: MatchedFinding) -> GroupKey:
    """The correlation key: findings with equal keys merge."""
    advisory_id = item.finding.advisory_id
    if advisory_id:
        return ("advisory", advisory_id, "")
    return ("title", _subject_key(item), normalize_title(item.finding.title))


def _canonical_id(key: GroupKey) -> str:
    kind, first, second = key
    if kind == "advisory":
        return first
    digest = hashlib.sha256(f"{first}\0{second}".encode("utf-8")).hexdigest()
    return HASHED_ID_PREFIX + digest[:_HASHED_ID_HEX_LENGTH].upper()


def _member_sort_key(item: MatchedFinding) -> tuple:
    """Total order over members; the smallest member supplies representative fields."""
    f = item.finding
    return (
        -SEVERITY_RANK[f.severity],
        f.source,
        f.source_finding_id,
        f.package_name,
        f.package_version or "",
        f.location,
        f.title,
        f.description,
        _ref_sort_key(item.component_ref) if item.component_ref else ("", ""),
    )


def _primary_component(members: list[MatchedFinding]) -> ComponentRef | None:
    """Most frequently matched component; ties go to the smallest key."""
    counts = Counter(m.component_ref for m in members if m.component_ref is not None)
    if not counts:
        return None
    return min(counts, key=lambda ref: (-counts[ref], _ref_sort_key(ref)))


def _build(key: GroupKey, members: list[MatchedFinding]) -> CorrelatedVulnerability:
    ordered = sorted(members, key=_member_sort_key)
    findings = [m.finding for m in ordered]
    representative = findings[0]
    canonical_id = _canonical_id(key)

    aliases = {a for f in findings for a in f.aliases}
    aliases |= {f.advisory_id for f in findings if f.advisory_id}
    aliases.discard(canonical_id)
    fixed_versions = sorted({f.fixed_version for f in findings if f.fixed_version})
    cvss_scores = [f.cvss_score for f in findings if f.cvss_score is not None]

    return CorrelatedVulnerability(
        canonical_id=canonical_id,
        component_ref=_primary_component(ordered),
        affected_components=tuple(
            sorted({m.component_ref for m in ordered if m.component_ref is not None}, key=_ref_sort_key)
        ),
        severity=max_severity([f.severity for f in findings]),
        severity_unknown=all(f.severity_unknown for f in findings),
        sources=tuple(sorted({f.source for f in findings})),
        fix_available=bool(fixed_versions),
        fixed_versions=tuple(fixed_versions),
        title=next((f.title for f in findings if f.title), ""),
        description=next((f.description for f in findings if f.description), ""),
        references=tuple(sorted({r for f in findings for r in f.references})),
        aliases=tuple(sorted(aliases)),
        cwe_ids=tuple(sorted({c for f in findings for c in f.cwe_ids})),
        cvss_score=max(cvss_scores) if cvss_scores else None,
        package_name=representative.package_name,
        package_version=representative.package_version,
        source_finding_ids=tuple(sorted({f.source_finding_id for f in findings if f.source_finding_id})),
        finding_count=len(findings),
    )


def sort_correlated(items: Iterable[CorrelatedVulnerability]) -> list[CorrelatedVulnerability]:
    """Severity descending, then canonical_id ascending."""
    return sorted(items, key=lambda v: (-SEVERITY_RANK[v.severity], v.canonical_id))


def merge(matched: Iterable[MatchedFinding]) -> list[CorrelatedVulnerability]:
    """Group matched findings into correlated vulnerabilities (order-independent)."""
    groups: defaultdict[GroupKey, list[MatchedFinding]] = defaultdict(list)
    for item in matched:
        groups[group_key(item)].append(item)
    return sort_correlated(_build(key, members) for key, members in groups.items())

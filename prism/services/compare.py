"""Compare two results for the same target: new, resolved and re-rated vulnerabilities."""

from prism.schemas.results import ResultComparison, ScanTargetResult, SeverityChange


def compare_results(previous: ScanTargetResult | None, current: ScanTargetResult) -> ResultComparison:
    """
    Diff current against previous by canonical_id. With no previous result every
    vulnerability is new.
    """
    current_by_id = {v.canonical_id: v for v in current.correlated_vulnerabilities}
    if previous is None:
        return ResultComparison(
            target_key=current.target_key,
            current_scanned_at=current.scanned_at,
            changed=bool(current_by_id),
            new=sorted(current_by_id),
        )

    previous_by_id = {v.canonical_id: v for v in previous.correlated_vulnerabilities}
    new = sorted(current_by_id.keys() - previous_by_id.keys())
    resolved = sorted(previous_by_id.keys() - current_by_id.keys())
    severity_changed: list[SeverityChange] = []
    unchanged = 0
    for canonical_id in sorted(current_by_id.keys() & previous_by_id.keys()):
        before = previous_by_id[canonical_id].severity
        after = current_by_id[canonical_id].severity
        if before != after:
            severity_changed.append(SeverityChange(canonical_id=canonical_id, previous=before, current=after))
        else:
            unchanged += 1

    return ResultComparison(
        target_key=current.target_key,
        current_scanned_at=current.scanned_at,
        previous_scanned_at=previous.scanned_at,
        changed=previous.content_hash != current.content_hash,
        new=new,
        resolved=resolved,
        severity_changed=severity_changed,
        unchanged_count=unchanged,
    )

"""
Correlation pipeline: fetch and normalize every source payload concurrently, then match,
merge and aggregate into a ScanTargetResult.

A source whose fetch fails, times out, or whose payload is malformed is marked scan_failed
and the run continues with the remaining sources; the summary is then flagged partial.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import NamedTuple

from prism.schemas.findings import SCAN_SOURCES, Component, Finding, ScanSource
from prism.schemas.results import ScanTargetResult, SourceStatus
from prism.services.aggregation import DEFAULT_TOP_N, aggregate
from prism.services.correlation import merge
from prism.services.fetch import SourceFetch, SourceFetchError, text_fetch
from prism.services.matching import DEFAULT_STRATEGIES, MatchStrategy, match_all
from prism.services.normalize import MalformedPayload, normalize
from prism.services.result_cache import compute_content_hash

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SEC = 30.0


class RawPayload(NamedTuple):
    """A payload whose bytes are already in hand."""

    source: ScanSource
    data: bytes | str


class SourceOutcome(NamedTuple):
    source: ScanSource
    findings: list[Finding] | None
    error: str | None = None


def _failed(source: ScanSource, origin: str, error: str) -> SourceOutcome:
    logger.warning(
        "Source scan failed; continuing without it",
        extra={"source": source, "origin": origin, "error": error},
    )
    return SourceOutcome(source, None, error)


def _normalize_outcome(source: ScanSource, origin: str, data: bytes | str) -> SourceOutcome:
    try:
        findings = normalize(data, source)
    except MalformedPayload as e:
        return _failed(source, origin, f"malformed payload: {e.message}")
    logger.info(
        "Normalized source payload",
        extra={"source": source, "origin": origin, "finding_count": len(findings)},
    )
    return SourceOutcome(source, findings)


async def _run_source(item: SourceFetch, timeout: float) -> SourceOutcome:
    try:
        data = await asyncio.wait_for(item.fetch(), timeout=timeout)
    except asyncio.TimeoutError:
        return _failed(item.source, item.origin, f"fetch timed out after {timeout}s")
    except SourceFetchError as e:
        return _failed(item.source, item.origin, e.message)
    return _normalize_outcome(item.source, item.origin, data)


def source_statuses(outcomes: Iterable[SourceOutcome]) -> list[SourceStatus]:
    """
    One status per known source. Several payloads for one source are combined: the source
    failed if any of them failed, and it is clean only if none failed and none had findings.
    """
    by_source: dict[str, list[SourceOutcome]] = {}
    for outcome in outcomes:
        by_source.setdefault(outcome.source, []).append(outcome)

    statuses: list[SourceStatus] = []
    for source in SCAN_SOURCES:
        items = by_source.get(source)
        if not items:
            statuses.append(SourceStatus(source=source, scanned=False))
            continue
        errors = [o.error for o in items if o.error]
        count = sum(len(o.findings) for o in items if o.findings is not None)
        statuses.append(
            SourceStatus(
                source=source,
                scanned=True,
                scan_failed=bool(errors),
                no_findings=not errors and count == 0,
                finding_count=count,
                error="; ".join(errors) or None,
            )
        )
    return statuses


def build_result(
    target_key: str,
    components: Sequence[Component],
    outcomes: Sequence[SourceOutcome],
    *,
    top_n: int = DEFAULT_TOP_N,
    scanned_at: datetime | None = None,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> ScanTargetResult:
    """Match, merge and aggregate normalized outcomes into a ScanTargetResult."""
    findings = [f for o in outcomes if o.findings is not None for f in o.findings]
    matched = match_all(findings, components, strategies)
    matched_count = sum(1 for m in matched if m.component_ref is not None)
    correlated = merge(matched)
    summary = aggregate(
        correlated,
        top_n=top_n,
        source_statuses=source_statuses(outcomes),
        match_stats={
            "finding_count": len(findings),
            "matched_finding_count": matched_count,
            "unmatched_finding_count": len(matched) - matched_count,
        },
        components=components,
    )
    result = ScanTargetResult(
        target_key=target_key,
        scanned_at=scanned_at or datetime.now(UTC),
        correlated_vulnerabilities=correlated,
        summary=summary,
        content_hash=compute_content_hash(correlated, summary),
    )
    logger.info(
        "Correlation complete",
        extra={
            "target_key": target_key,
            "finding_count": len(findings),
            "vulnerability_count": summary.total,
            "partial": summary.partial,
        },
    )
    return result


async def correlate(
    target_key: str,
    components: Sequence[Component],
    fetches: Sequence[SourceFetch],
    *,
    timeout: float = DEFAULT_FETCH_TIMEOUT_SEC,
    top_n: int = DEFAULT_TOP_N,
    scanned_at: datetime | None = None,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> ScanTargetResult:
    """
    Fetch and normalize all sources concurrently (each bounded by timeout), then correlate.

    Matching starts only after every source has finished or failed.
    """
    outcomes = await asyncio.gather(*(_run_source(item, timeout) for item in fetches))
    return build_result(
        target_key,
        components,
        outcomes,
        top_n=top_n,
        scanned_at=scanned_at,
        strategies=strategies,
    )


def correlate_payloads(
    target_key: str,
    components: Sequence[Component],
    payloads: Iterable[RawPayload],
    *,
    top_n: int = DEFAULT_TOP_N,
    scanned_at: datetime | None = None,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> ScanTargetResult:
    """Synchronous variant for payloads already in memory."""
    outcomes = [_normalize_outcome(p.source, "raw", p.data) for p in payloads]
    return build_result(
        target_key,
        components,
        outcomes,
        top_n=top_n,
        scanned_at=scanned_at,
        strategies=strategies,
    )


def raw_fetches(payloads: Iterable[RawPayload]) -> list[SourceFetch]:
    """Wrap in-memory payloads as fetches for correlate()."""
    return [SourceFetch(p.source, text_fetch(p.data), "raw") for p in payloads]

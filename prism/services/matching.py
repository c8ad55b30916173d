"""Attribute findings to SBOM components with an ordered list of matching strategies.

Strategies run in order and the first one that yields candidates wins. Among several
candidates the tie-break is: longest common substring with the finding's package name,
then component name, version and purl ascending. Append a strategy to DEFAULT_STRATEGIES
(or pass a custom tuple) to extend matching without touching callers.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from difflib import SequenceMatcher
from typing import NamedTuple

from prism.schemas.findings import Component, ComponentRef, Finding, MatchedFinding
from prism.services.purl import normalize_package_name, normalize_version, parse_purl

# Shorter side of a containment match must be at least this long.
MIN_CONTAINMENT_LENGTH = 3


class IndexedComponent(NamedTuple):
    component: Component
    names: frozenset[str]
    version: str


class ComponentIndex:
    """Pre-normalized view of an SBOM component list, built once per correlation run."""

    def __init__(self, components: Iterable[Component]) -> None:
        self.entries: list[IndexedComponent] = []
        self.by_name: defaultdict[str, list[IndexedComponent]] = defaultdict(list)
        for component in components:
            names = {normalize_package_name(component.name)}
            parsed = parse_purl(component.package_url)
            if parsed is not None:
                names.add(normalize_package_name(parsed.full_name))
            names.discard("")
            if not names:
                continue
            entry = IndexedComponent(component, frozenset(names), normalize_version(component.version))
            self.entries.append(entry)
            for name in entry.names:
                self.by_name[name].append(entry)


class MatchStrategy:
    """One matching rule: return every component that satisfies it (may be empty)."""

    name: str = ""

    def candidates(self, name: str, version: str, index: ComponentIndex) -> list[IndexedComponent]:
        raise NotImplementedError


class ExactNameVersion(MatchStrategy):
    name = "exact-name-version"

    def candidates(self, name: str, version: str, index: ComponentIndex) -> list[IndexedComponent]:
        if not version:
            return []
        return [e for e in index.by_name.get(name, []) if e.version == version]


class ExactName(MatchStrategy):
    """Same package, different version granularity between scanner and SBOM."""

    name = "exact-name"

    def candidates(self, name: str, version: str, index: ComponentIndex) -> list[IndexedComponent]:
        return list(index.by_name.get(name, []))


class Containment(MatchStrategy):
    """One name contains the other (monorepo paths, fully-qualified module names)."""

    name = "containment"

    def __init__(self, min_length: int = MIN_CONTAINMENT_LENGTH) -> None:
        self.min_length = min_length

    def candidates(self, name: str, version: str, index: ComponentIndex) -> list[IndexedComponent]:
        return [e for e in index.entries if any(self._contains(name, n) for n in e.names)]

    def _contains(self, a: str, b: str) -> bool:
        shorter = a if len(a) <= len(b) else b
        if len(shorter) < self.min_length:
            return False
        return a in b or b in a


DEFAULT_STRATEGIES: tuple[MatchStrategy, ...] = (ExactNameVersion(), ExactName(), Containment())


def _longest_common_substring(a: str, b: str) -> int:
    return SequenceMatcher(None, a, b, autojunk=False).find_longest_match(0, len(a), 0, len(b)).size


def _pick(candidates: list[IndexedComponent], name: str) -> IndexedComponent:
    """Deterministic winner among candidates for one rule."""

    def key(entry: IndexedComponent) -> tuple[int, str, str, str]:
        lcs = max(_longest_common_substring(name, n) for n in entry.names)
        c = entry.component
        return (-lcs, c.name, c.version, c.package_url or "")

    return min(candidates, key=key)


def match_with_rule(
    finding: Finding,
    components: Sequence[Component] | ComponentIndex,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> tuple[ComponentRef | None, str | None]:
    """Return (component ref, name of the rule that matched), or (None, None)."""
    index = components if isinstance(components, ComponentIndex) else ComponentIndex(components)
    name = normalize_package_name(finding.package_name or finding.package_url)
    if not name:
        return None, None
    version = normalize_version(finding.package_version)
    for strategy in strategies:
        found = strategy.candidates(name, version, index)
        if found:
            return _pick(found, name).component.ref(), strategy.name
    return None, None


def match(
    finding: Finding,
    components: Sequence[Component] | ComponentIndex,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> ComponentRef | None:
    """Resolve the SBOM component a finding refers to; None leaves it unattributed."""
    ref, _ = match_with_rule(finding, components, strategies)
    return ref


def match_all(
    findings: Iterable[Finding],
    components: Sequence[Component] | ComponentIndex,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> list[MatchedFinding]:
    """Match every finding; the output has exactly one entry per input finding."""
    index = components if isinstance(components, ComponentIndex) else ComponentIndex(components)
    matched: list[MatchedFinding] = []
    for finding in findings:
        ref, rule = match_with_rule(finding, index, strategies)
        matched.append(MatchedFinding(finding=finding, component_ref=ref, match_rule=rule))
    return matched

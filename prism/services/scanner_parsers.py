"""Per-source parsers mapping scanner report shapes to normalized Finding records.

Every scan source has exactly one parser in PARSERS. A parser validates only the
structure it needs (top-level containers and finding objects); optional fields that are
missing or of the wrong type are dropped instead of failing the payload.
"""

from typing import Any

from prism.schemas.findings import Finding, ScanSource, SeverityLevel
from prism.services.normalize_utils import (
    COMMON_SEVERITY_ALIASES,
    MalformedPayload,
    as_dict,
    as_list,
    canonical_advisory_id,
    extract_cve,
    float_or_none,
    is_cve,
    normalize_severity,
    pick,
    str_or_none,
    str_tuple,
    title_from,
)

# Vendor CVSS blocks in preference order (Trivy / dashboard SCA shape).
_CVSS_VENDORS = ("nvd", "redhat", "ghsa", "bitnami")


class ScannerParser:
    """Base parser: subclasses set source and severity_aliases and implement parse()."""

    source: ScanSource
    severity_aliases: dict[str, SeverityLevel] = {}

    def __init__(self) -> None:
        self._severity_table = {**COMMON_SEVERITY_ALIASES, **self.severity_aliases}

    def parse(self, data: Any) -> list[Finding]:
        raise NotImplementedError

    def malformed(self, message: str) -> MalformedPayload:
        return MalformedPayload(self.source, message)

    def severity(self, raw: Any, cvss_score: float | None = None) -> tuple[SeverityLevel, bool]:
        return normalize_severity(raw, cvss_score, self._severity_table)

    def require_list(self, value: Any, where: str) -> list[Any]:
        """A missing/null container is an empty list; any other non-list is a structural error."""
        if value is None:
            return []
        if not isinstance(value, list):
            raise self.malformed(f"{where} must be an array")
        return value

    def require_object(self, value: Any, where: str) -> dict[str, Any]:
        if not isinstance(value, dict):
            raise self.malformed(f"{where} must be an object")
        return value


def _vendor_cvss_score(cvss: Any) -> float | None:
    """Best CVSS score from a {vendor: {V3Score, V2Score}} block: first vendor with V3, else any V2."""
    block = as_dict(cvss)
    fallback: float | None = None
    for vendor in _CVSS_VENDORS:
        data = as_dict(block.get(vendor))
        v3 = float_or_none(data.get("V3Score"))
        if v3 is not None:
            return v3
        if fallback is None:
            fallback = float_or_none(data.get("V2Score"))
    return fallback


def _references_cve_aliases(vuln_id: str | None, references: tuple[str, ...]) -> list[str]:
    """CVE IDs mentioned in reference URLs, used as aliases when the scanner ID is not a CVE."""
    if is_cve(vuln_id):
        return []
    found = (extract_cve(ref) for ref in references)
    return [cve for cve in found if cve]


class ContainerScanParser(ScannerParser):
    """Trivy image scans: native (Results/Vulnerabilities), dashboard-wrapped (snake_case), or bare lists."""

    source: ScanSource = "container-scan"

    def parse(self, data: Any) -> list[Finding]:
        findings: list[Finding] = []
        for target, vuln in self._iter_vulnerabilities(data):
            findings.append(self._to_finding(vuln, target))
        return findings

    def _iter_vulnerabilities(self, data: Any) -> list[tuple[str, dict[str, Any]]]:
        if isinstance(data, list):
            return [("", self.require_object(v, f"vulnerabilities[{i}]")) for i, v in enumerate(data)]
        if not isinstance(data, dict):
            raise self.malformed("payload must be an object or an array")

        if "Results" in data:
            results = self.require_list(data["Results"], "Results")
        elif "result" in data:
            wrapped = as_dict(as_dict(data["result"]).get("scan_result"))
            if not wrapped and data["result"] is not None:
                raise self.malformed("result.scan_result must be an object")
            results = self.require_list(wrapped.get("results"), "result.scan_result.results")
        elif "results" in data:
            results = self.require_list(data["results"], "results")
        elif "vulnerabilities" in data:
            vulns = self.require_list(data["vulnerabilities"], "vulnerabilities")
            return [("", self.require_object(v, f"vulnerabilities[{i}]")) for i, v in enumerate(vulns)]
        elif "SchemaVersion" in data or "ArtifactName" in data:
            # Trivy omits Results entirely when no scan targets were detected.
            return []
        else:
            raise self.malformed("expected Results, result.scan_result, results or vulnerabilities")

        out: list[tuple[str, dict[str, Any]]] = []
        for i, result in enumerate(results):
            result = self.require_object(result, f"results[{i}]")
            target = str_or_none(pick(result, "Target", "target")) or ""
            vulns = self.require_list(pick(result, "Vulnerabilities", "vulnerabilities"), f"results[{i}].vulnerabilities")
            for j, vuln in enumerate(vulns):
                out.append((target, self.require_object(vuln, f"results[{i}].vulnerabilities[{j}]")))
        return out

    def _to_finding(self, vuln: dict[str, Any], target: str) -> Finding:
        vuln_id = str_or_none(pick(vuln, "VulnerabilityID", "vulnerability_id"))
        references = str_tuple(pick(vuln, "References", "references"))
        advisory_id, aliases = canonical_advisory_id(
            vuln_id, _references_cve_aliases(vuln_id, references)
        )
        cvss_score = _vendor_cvss_score(pick(vuln, "CVSS", "cvss"))
        severity, unknown = self.severity(pick(vuln, "Severity", "severity"), cvss_score)
        description = str_or_none(pick(vuln, "Description", "description")) or ""
        package_name = str_or_none(pick(vuln, "PkgName", "pkg_name")) or ""
        return Finding(
            source=self.source,
            source_finding_id=vuln_id or "",
            advisory_id=advisory_id,
            aliases=aliases,
            package_name=package_name,
            package_version=str_or_none(pick(vuln, "InstalledVersion", "installed_version")),
            package_url=str_or_none(as_dict(vuln.get("PkgIdentifier")).get("PURL")),
            # Package-less entries (OS-level findings) are located by their scan target.
            location="" if package_name else target,
            severity=severity,
            severity_unknown=unknown,
            title=title_from(pick(vuln, "Title", "title"), description),
            description=description,
            references=references,
            fixed_version=str_or_none(pick(vuln, "FixedVersion", "fixed_version")),
            cvss_score=cvss_score,
            cwe_ids=str_tuple(pick(vuln, "CweIDs", "cwe_ids")),
        )


class SourceScanParser(ScannerParser):
    """Dependency scans of a source checkout: dashboard SCA shape, Grype matches, or bare lists."""

    source: ScanSource = "source-scan"

    def parse(self, data: Any) -> list[Finding]:
        if isinstance(data, list):
            return [self._from_sca(self.require_object(v, f"[{i}]")) for i, v in enumerate(data)]
        if not isinstance(data, dict):
            raise self.malformed("payload must be an object or an array")
        if "matches" in data:
            matches = self.require_list(data["matches"], "matches")
            return [self._from_grype(self.require_object(m, f"matches[{i}]")) for i, m in enumerate(matches)]
        if "vulnerabilities" in data:
            vulns = self.require_list(data["vulnerabilities"], "vulnerabilities")
            return [self._from_sca(self.require_object(v, f"vulnerabilities[{i}]")) for i, v in enumerate(vulns)]
        raise self.malformed("expected matches or vulnerabilities")

    def _from_sca(self, vuln: dict[str, Any]) -> Finding:
        raw_id = pick(vuln, "cve", "id", "vulnerability_id")
        references = str_tuple(vuln.get("references"))
        advisory_id, aliases = canonical_advisory_id(raw_id, str_tuple(vuln.get("aliases")))
        cvss_score = _vendor_cvss_score(vuln.get("cvss"))
        if cvss_score is None:
            cvss_score = float_or_none(vuln.get("cvss_score"))
        severity, unknown = self.severity(vuln.get("severity"), cvss_score)
        description = str_or_none(vuln.get("description")) or ""
        return Finding(
            source=self.source,
            source_finding_id=str_or_none(raw_id) or "",
            advisory_id=advisory_id,
            aliases=aliases,
            package_name=str_or_none(pick(vuln, "name", "package", "pkg_name")) or "",
            package_version=str_or_none(pick(vuln, "version", "installed_version")),
            package_url=str_or_none(vuln.get("purl")),
            severity=severity,
            severity_unknown=unknown,
            title=title_from(vuln.get("title"), description),
            description=description,
            references=references,
            fixed_version=str_or_none(vuln.get("fixed_version")),
            cvss_score=cvss_score,
            cwe_ids=str_tuple(vuln.get("cwe_ids")),
        )

    def _from_grype(self, match: dict[str, Any]) -> Finding:
        vuln = as_dict(match.get("vulnerability"))
        artifact = as_dict(match.get("artifact"))
        related = [as_dict(r).get("id") for r in as_list(match.get("relatedVulnerabilities")) if isinstance(r, dict)]
        related += [as_dict(r).get("id") for r in as_list(vuln.get("relatedVulnerabilities")) if isinstance(r, dict)]
        advisory_id, aliases = canonical_advisory_id(vuln.get("id"), related)

        cvss_score: float | None = None
        best_version = ""
        for entry in as_list(vuln.get("cvss")):
            entry = as_dict(entry)
            version = str_or_none(entry.get("version")) or "0.0"
            score = float_or_none(as_dict(entry.get("metrics")).get("baseScore"))
            if score is not None and version >= best_version:
                best_version, cvss_score = version, score

        fix_versions = str_tuple(as_dict(vuln.get("fix")).get("versions"))
        severity, unknown = self.severity(vuln.get("severity"), cvss_score)
        description = str_or_none(vuln.get("description")) or ""
        return Finding(
            source=self.source,
            source_finding_id=str_or_none(vuln.get("id")) or "",
            advisory_id=advisory_id,
            aliases=aliases,
            package_name=str_or_none(artifact.get("name")) or "",
            package_version=str_or_none(artifact.get("version")),
            package_url=str_or_none(artifact.get("purl")),
            severity=severity,
            severity_unknown=unknown,
            title=title_from(vuln.get("title"), description),
            description=description,
            references=str_tuple(vuln.get("urls")),
            fixed_version=fix_versions[0] if fix_versions else None,
            cvss_score=cvss_score,
        )


class AdvisoryDbParser(ScannerParser):
    """OSV advisory lookups: osv-scanner output, per-component osv_vulnerabilities, or bare lists."""

    source: ScanSource = "advisory-db"

    def parse(self, data: Any) -> list[Finding]:
        if isinstance(data, list):
            entries = data
        elif isinstance(data, dict) and "results" in data:
            return self._parse_osv_scanner(self.require_list(data["results"], "results"))
        elif isinstance(data, dict) and "osv_vulnerabilities" in data:
            entries = self.require_list(data["osv_vulnerabilities"], "osv_vulnerabilities")
        elif isinstance(data, dict):
            raise self.malformed("expected results or osv_vulnerabilities")
        else:
            raise self.malformed("payload must be an object or an array")

        findings: list[Finding] = []
        for i, entry in enumerate(entries):
            entry = self.require_object(entry, f"osv_vulnerabilities[{i}]")
            name = str_or_none(pick(entry, "component", "name")) or ""
            version = str_or_none(entry.get("version"))
            vulns = self.require_list(entry.get("vulnerabilities"), f"osv_vulnerabilities[{i}].vulnerabilities")
            for j, vuln in enumerate(vulns):
                vuln = self.require_object(vuln, f"osv_vulnerabilities[{i}].vulnerabilities[{j}]")
                findings.append(self._to_finding(vuln, name, version, str_or_none(entry.get("purl"))))
        return findings

    def _parse_osv_scanner(self, results: list[Any]) -> list[Finding]:
        findings: list[Finding] = []
        for i, result in enumerate(results):
            result = self.require_object(result, f"results[{i}]")
            for j, pkg in enumerate(self.require_list(result.get("packages"), f"results[{i}].packages")):
                pkg = self.require_object(pkg, f"results[{i}].packages[{j}]")
                package = as_dict(pkg.get("package"))
                name = str_or_none(package.get("name")) or ""
                version = str_or_none(package.get("version"))
                purl = str_or_none(package.get("purl"))
                vulns = self.require_list(pkg.get("vulnerabilities"), f"results[{i}].packages[{j}].vulnerabilities")
                for k, vuln in enumerate(vulns):
                    vuln = self.require_object(vuln, f"results[{i}].packages[{j}].vulnerabilities[{k}]")
                    findings.append(self._to_finding(vuln, name, version, purl))
        return findings

    def _to_finding(
        self,
        vuln: dict[str, Any],
        package_name: str,
        package_version: str | None,
        package_url: str | None,
    ) -> Finding:
        db_specific = as_dict(vuln.get("database_specific"))
        advisory_id, aliases = canonical_advisory_id(vuln.get("id"), str_tuple(vuln.get("aliases")))
        cvss_score = float_or_none(pick(vuln, "cvss_score", "cvss"))
        severity, unknown = self.severity(db_specific.get("severity"), cvss_score)
        summary = str_or_none(vuln.get("summary"))
        details = str_or_none(vuln.get("details"))
        refs = vuln.get("references")
        if isinstance(refs, list):
            refs = [r.get("url") if isinstance(r, dict) else r for r in refs]
        references = str_tuple(refs)
        return Finding(
            source=self.source,
            source_finding_id=str_or_none(vuln.get("id")) or "",
            advisory_id=advisory_id,
            aliases=aliases,
            package_name=package_name,
            package_version=package_version,
            package_url=package_url,
            severity=severity,
            severity_unknown=unknown,
            title=title_from(summary, details),
            description=details or summary or "",
            references=references,
            fixed_version=self._first_fixed_version(vuln, package_name),
            cvss_score=cvss_score,
            cwe_ids=str_tuple(db_specific.get("cwe_ids")),
        )

    @staticmethod
    def _first_fixed_version(vuln: dict[str, Any], package_name: str) -> str | None:
        """First 'fixed' range event, preferring the affected entry for this package."""
        affected = [as_dict(a) for a in as_list(vuln.get("affected")) if isinstance(a, dict)]
        own = [a for a in affected if as_dict(a.get("package")).get("name") == package_name]
        for entry in own + [a for a in affected if a not in own]:
            for rng in as_list(entry.get("ranges")):
                for event in as_list(as_dict(rng).get("events")):
                    fixed = str_or_none(as_dict(event).get("fixed"))
                    if fixed:
                        return fixed
        return None


class StaticAnalysisParser(ScannerParser):
    """SAST reports: SARIF (runs/results) or Semgrep JSON (results, or a bare list)."""

    source: ScanSource = "static-analysis"
    severity_aliases: dict[str, SeverityLevel] = {
        "error": "high",
        "warning": "medium",
        "note": "low",
    }

    def parse(self, data: Any) -> list[Finding]:
        if isinstance(data, list):
            return [self._from_semgrep(self.require_object(r, f"[{i}]")) for i, r in enumerate(data)]
        if not isinstance(data, dict):
            raise self.malformed("payload must be an object or an array")
        if "runs" in data:
            return self._parse_sarif(self.require_list(data["runs"], "runs"))
        if "results" in data:
            results = self.require_list(data["results"], "results")
            return [self._from_semgrep(self.require_object(r, f"results[{i}]")) for i, r in enumerate(results)]
        raise self.malformed("expected runs (SARIF) or results (Semgrep)")

    def _parse_sarif(self, runs: list[Any]) -> list[Finding]:
        findings: list[Finding] = []
        for i, run in enumerate(runs):
            run = self.require_object(run, f"runs[{i}]")
            driver = as_dict(as_dict(run.get("tool")).get("driver"))
            rules = {
                str_or_none(r.get("id")): r
                for r in as_list(driver.get("rules"))
                if isinstance(r, dict) and str_or_none(r.get("id"))
            }
            for j, result in enumerate(self.require_list(run.get("results"), f"runs[{i}].results")):
                result = self.require_object(result, f"runs[{i}].results[{j}]")
                findings.append(self._from_sarif_result(result, rules))
        return findings

    def _from_sarif_result(self, result: dict[str, Any], rules: dict[Any, dict[str, Any]]) -> Finding:
        rule_id = str_or_none(result.get("ruleId")) or str_or_none(as_dict(result.get("rule")).get("id")) or ""
        rule = rules.get(rule_id, {})
        props = {**as_dict(rule.get("properties")), **as_dict(result.get("properties"))}
        level = pick(result, "level") or as_dict(rule.get("defaultConfiguration")).get("level") or props.get("severity")
        security_severity = float_or_none(props.get("security-severity"))
        if security_severity is not None:
            severity, unknown = self.severity(None, security_severity)
        else:
            severity, unknown = self.severity(level or "warning")

        location = ""
        locations = result.get("locations")
        if isinstance(locations, list) and locations:
            physical = as_dict(as_dict(locations[0]).get("physicalLocation"))
            location = str_or_none(as_dict(physical.get("artifactLocation")).get("uri")) or ""

        message = str_or_none(as_dict(result.get("message")).get("text")) or ""
        short = str_or_none(as_dict(rule.get("shortDescription")).get("text"))
        return Finding(
            source=self.source,
            source_finding_id=rule_id,
            location=location,
            severity=severity,
            severity_unknown=unknown,
            title=title_from(short or rule.get("name") or rule_id, message),
            description=message,
            references=str_tuple(rule.get("helpUri")),
            cwe_ids=_cwe_tags(props.get("tags")),
        )

    def _from_semgrep(self, result: dict[str, Any]) -> Finding:
        extra = as_dict(result.get("extra"))
        metadata = as_dict(extra.get("metadata"))
        check_id = str_or_none(result.get("check_id")) or ""
        severity, unknown = self.severity(pick(extra, "severity") or metadata.get("severity"))
        message = str_or_none(extra.get("message")) or ""
        cwe = metadata.get("cwe")
        return Finding(
            source=self.source,
            source_finding_id=check_id,
            location=(str_or_none(result.get("path")) or "").replace("\\", "/"),
            severity=severity,
            severity_unknown=unknown,
            title=title_from(check_id, message),
            description=message,
            references=str_tuple(metadata.get("references")),
            cwe_ids=_cwe_tags(cwe if isinstance(cwe, list) else [cwe]),
        )


def _cwe_tags(tags: Any) -> tuple[str, ...]:
    """Extract CWE-NNN identifiers from tags like 'external/cwe/cwe-79' or 'CWE-89: SQL Injection'."""
    out: dict[str, None] = {}
    for tag in str_tuple(tags):
        lowered = tag.lower()
        idx = lowered.find("cwe-")
        if idx < 0:
            continue
        digits = ""
        for ch in lowered[idx + 4 :]:
            if not ch.isdigit():
                break
            digits += ch
        if digits:
            out.setdefault(f"CWE-{digits}", None)
    return tuple(out)


PARSERS: dict[ScanSource, ScannerParser] = {
    "container-scan": ContainerScanParser(),
    "source-scan": SourceScanParser(),
    "advisory-db": AdvisoryDbParser(),
    "static-analysis": StaticAnalysisParser(),
}

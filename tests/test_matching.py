"""Unit tests for prism.services.matching and the purl/name helpers it relies on."""

import unittest

from prism.schemas.findings import Component, Finding
from prism.services.matching import (
    Containment,
    ExactName,
    ExactNameVersion,
    match,
    match_all,
    match_with_rule,
)
from prism.services.purl import normalize_package_name, normalize_version, parse_purl


def _finding(package_name: str = "lodash", package_version: str | None = "4.17.15", **kwargs: object) -> Finding:
    """Build a minimal Finding for tests."""
    defaults: dict[str, object] = {
        "source": "source-scan",
        "source_finding_id": "CVE-2024-0001",
        "advisory_id": "CVE-2024-0001",
        "severity": "high",
    }
    defaults.update(kwargs)
    return Finding(package_name=package_name, package_version=package_version, **defaults)


class TestPurlHelpers(unittest.TestCase):
    def test_parse_scoped_npm_purl(self) -> None:
        parsed = parse_purl("pkg:npm/%40babel/core@7.22.0")
        self.assertEqual(parsed.type, "npm")
        self.assertEqual(parsed.full_name, "@babel/core")
        self.assertEqual(parsed.version, "7.22.0")

    def test_parse_rejects_non_purl(self) -> None:
        self.assertIsNone(parse_purl("lodash"))
        self.assertIsNone(parse_purl("pkg:npm"))

    def test_normalize_package_name(self) -> None:
        self.assertEqual(normalize_package_name("  Lodash "), "lodash")
        self.assertEqual(normalize_package_name("npm:lodash"), "lodash")
        self.assertEqual(normalize_package_name("github.com/gin-gonic/gin"), "gin-gonic/gin")
        self.assertEqual(normalize_package_name("pkg:golang/github.com/gin-gonic/gin@v1.9.0"), "gin-gonic/gin")
        self.assertEqual(normalize_package_name("@babel/core"), "@babel/core")
        self.assertEqual(normalize_package_name(None), "")

    def test_normalize_version(self) -> None:
        self.assertEqual(normalize_version("v1.2.3"), "1.2.3")
        self.assertEqual(normalize_version("go1.21.5"), "1.21.5")
        self.assertEqual(normalize_version(" 2.0.0-RC1 "), "2.0.0-rc1")
        self.assertEqual(normalize_version("very-old"), "very-old")


class TestMatchRules(unittest.TestCase):
    """Rules apply in order; the first rule with candidates wins."""

    def test_exact_name_and_version_preferred(self) -> None:
        components = [Component(name="lodash", version="4.17.21"), Component(name="lodash", version="4.17.15")]
        ref, rule = match_with_rule(_finding(), components)
        self.assertEqual(ref.version, "4.17.15")
        self.assertEqual(rule, "exact-name-version")

    def test_name_match_with_version_mismatch(self) -> None:
        components = [Component(name="lodash", version="4.17.21")]
        ref, rule = match_with_rule(_finding(), components)
        self.assertEqual(ref.key, "lodash@4.17.21")
        self.assertEqual(rule, "exact-name")

    def test_version_prefix_is_ignored(self) -> None:
        components = [Component(name="semver", version="7.5.2")]
        ref, rule = match_with_rule(_finding("semver", "v7.5.2"), components)
        self.assertEqual(rule, "exact-name-version")
        self.assertEqual(ref.name, "semver")

    def test_component_purl_name_is_matched(self) -> None:
        components = [
            Component(name="gin", version="v1.9.0", package_url="pkg:golang/github.com/gin-gonic/gin@v1.9.0")
        ]
        ref, rule = match_with_rule(_finding("github.com/gin-gonic/gin", "1.9.0"), components)
        self.assertEqual(ref.name, "gin")
        self.assertEqual(rule, "exact-name-version")

    def test_containment(self) -> None:
        components = [Component(name="com.fasterxml.jackson.core:jackson-databind", version="2.13.0")]
        ref, rule = match_with_rule(_finding("jackson-databind", "2.13.0"), components)
        self.assertEqual(ref.name, "com.fasterxml.jackson.core:jackson-databind")
        self.assertEqual(rule, "containment")

    def test_short_names_do_not_match_by_containment(self) -> None:
        components = [Component(name="ioredis", version="5.0.0")]
        self.assertIsNone(match(_finding("io", "1.0.0"), components))

    def test_no_match_returns_none(self) -> None:
        ref, rule = match_with_rule(_finding("left-pad", "1.3.0"), [Component(name="lodash", version="4.17.21")])
        self.assertIsNone(ref)
        self.assertIsNone(rule)

    def test_file_level_finding_is_unattributed(self) -> None:
        finding = _finding("", None, source="static-analysis", advisory_id=None, location="app/db.py")
        self.assertIsNone(match(finding, [Component(name="app", version="1.0")]))


class TestTieBreak(unittest.TestCase):
    """Ties resolve deterministically regardless of component order."""

    def test_lowest_version_wins_among_equal_names(self) -> None:
        components = [Component(name="lodash", version="4.17.21"), Component(name="lodash", version="4.17.15")]
        finding = _finding("lodash", None)
        first = match(finding, components)
        second = match(finding, list(reversed(components)))
        self.assertEqual(first, second)
        self.assertEqual(first.version, "4.17.15")

    def test_longest_common_substring_preferred(self) -> None:
        components = [
            Component(name="acme-logging-core", version="1.0"),
            Component(name="acme-log", version="1.0"),
        ]
        ref = match(_finding("acme-logging", "9.9"), components)
        self.assertEqual(ref.name, "acme-logging-core")

    def test_equal_common_substring_picks_first_name(self) -> None:
        components = [Component(name="util", version="2.0"), Component(name="core", version="1.0")]
        finding = _finding("acme-core-utils", "1.0")
        for ordering in (components, list(reversed(components))):
            with self.subTest(order=[c.name for c in ordering]):
                ref, rule = match_with_rule(finding, ordering)
                self.assertEqual(rule, "containment")
                self.assertEqual(ref.name, "core")


class TestStrategies(unittest.TestCase):
    """Strategy tuples are configurable."""

    def test_custom_strategy_order(self) -> None:
        components = [Component(name="lodash", version="4.17.21")]
        self.assertIsNone(match(_finding(), components, strategies=(ExactNameVersion(),)))
        self.assertIsNotNone(match(_finding(), components, strategies=(ExactNameVersion(), ExactName())))

    def test_containment_min_length_configurable(self) -> None:
        components = [Component(name="ioredis", version="5.0.0")]
        ref = match(_finding("io", "1.0.0"), components, strategies=(Containment(min_length=2),))
        self.assertEqual(ref.name, "ioredis")


class TestMatchAll(unittest.TestCase):
    """No finding disappears during matching."""

    def test_matched_plus_unmatched_equals_input(self) -> None:
        findings = [
            _finding("lodash", "4.17.15"),
            _finding("left-pad", "1.3.0"),
            _finding("", None, source="static-analysis", advisory_id=None, location="a.py"),
        ]
        matched = match_all(findings, [Component(name="lodash", version="4.17.21")])
        self.assertEqual(len(matched), len(findings))
        attributed = [m for m in matched if m.component_ref is not None]
        unattributed = [m for m in matched if m.component_ref is None]
        self.assertEqual(len(attributed) + len(unattributed), len(findings))
        self.assertEqual(len(attributed), 1)
        self.assertEqual([m.finding for m in matched], findings)
        self.assertEqual(attributed[0].match_rule, "exact-name")


if __name__ == "__main__":
    unittest.main()

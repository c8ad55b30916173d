"""Package URL parsing and package name/version normalization used by the component matcher.

PURL format: pkg:type/namespace/name@version?qualifiers#subpath
See https://github.com/package-url/purl-spec
"""

from typing import NamedTuple
from urllib.parse import unquote

# Ecosystem prefixes some scanners put in front of package names ("npm:lodash").
ECOSYSTEM_PREFIXES = frozenset({
    "npm", "pypi", "maven", "golang", "go", "cargo", "crates.io", "nuget", "gem",
    "rubygems", "composer", "packagist", "deb", "rpm", "apk", "alpine", "debian",
    "pub", "hex", "cran", "swift", "cocoapods", "conan", "github", "oci", "docker",
})


class ParsedPURL(NamedTuple):
    """Parsed PURL components."""

    type: str
    namespace: str | None
    name: str
    version: str | None

    @property
    def full_name(self) -> str:
        """Package name including namespace (npm scope, maven group, go module path)."""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


def parse_purl(purl: str | None) -> ParsedPURL | None:
    """Parse a PURL string; None when it is not a PURL or lacks type/name."""
    if not purl or not purl.startswith("pkg:"):
        return None
    rest = purl[4:]
    rest = rest.split("#", 1)[0]
    rest = rest.split("?", 1)[0]
    version = None
    if "@" in rest:
        # npm scopes are encoded as %40, so the last '@' separates the version.
        rest, version = rest.rsplit("@", 1)
        version = unquote(version) or None
    if "/" not in rest:
        return None
    purl_type, path = rest.split("/", 1)
    segments = [unquote(s) for s in path.strip("/").split("/") if s]
    if not purl_type or not segments:
        return None
    name = segments[-1]
    namespace = "/".join(segments[:-1]) or None
    return ParsedPURL(type=purl_type.lower(), namespace=namespace, name=name, version=version)


def normalize_package_name(name: str | None) -> str:
    """
    Canonical form for name comparison: lower-case, trimmed, with purl / ecosystem / VCS host
    qualifiers removed.

    "pkg:golang/github.com/gin-gonic/gin@v1.9.0" -> "gin-gonic/gin"
    "github.com/org/pkg" -> "org/pkg"
    "npm:lodash" -> "lodash"
    """
    if not name:
        return ""
    value = name.strip()
    parsed = parse_purl(value)
    if parsed is not None:
        value = parsed.full_name
    value = value.lower()
    if ":" in value and "/" not in value.split(":", 1)[0]:
        prefix, remainder = value.split(":", 1)
        if prefix in ECOSYSTEM_PREFIXES and remainder:
            value = remainder
    segments = [s for s in value.split("/") if s]
    # Go-style module paths start with a host segment (github.com, golang.org, gopkg.in).
    if len(segments) > 1 and "." in segments[0] and not segments[0].startswith("@"):
        segments = segments[1:]
    return "/".join(segments)


def normalize_version(version: str | None) -> str:
    """Trim and lower-case a version, dropping a 'v' or 'go' prefix before a digit."""
    if not version:
        return ""
    v = version.strip().lower()
    if v.startswith("go") and len(v) > 2 and v[2].isdigit():
        return v[2:]
    if v.startswith("v") and len(v) > 1 and v[1].isdigit():
        return v[1:]
    return v


def package_type(purl: str | None) -> str:
    """Ecosystem type of a purl ('npm', 'pypi', ...), or 'unknown'."""
    parsed = parse_purl(purl)
    return parsed.type if parsed else "unknown"

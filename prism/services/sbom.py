"""
SBOM parsing: CycloneDX, SPDX and Syft JSON documents to Component records.

Format is detected from document markers (bomFormat, spdxVersion, artifacts). Components
without a name are skipped; a document with no recognizable structure raises MalformedSbom.
"""

import logging
from collections.abc import Iterable
from typing import Any

from prism.schemas.findings import Component
from prism.services.normalize_utils import as_list

logger = logging.getLogger(__name__)

# SPDX placeholders that mean "no license information".
_SPDX_NO_LICENSE = frozenset({"", "NOASSERTION", "NONE"})

COMPONENT_TYPES = frozenset({
    "library", "framework", "application", "container",
    "operating-system", "device", "file", "unknown",
})


class MalformedSbom(Exception):
    """Raised when an SBOM document is not a recognizable CycloneDX, SPDX or Syft document."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def detect_format(document: Any) -> str | None:
    """Return 'cyclonedx', 'spdx', 'syft' or None."""
    if not isinstance(document, dict):
        return None
    if document.get("bomFormat") == "CycloneDX":
        return "cyclonedx"
    schema = str(document.get("$schema") or "").lower()
    if "cyclonedx" in schema:
        return "cyclonedx"
    if document.get("spdxVersion") or "spdx" in schema:
        return "spdx"
    if isinstance(document.get("artifacts"), list):
        return "syft"
    if isinstance(document.get("components"), list):
        return "cyclonedx"
    if isinstance(document.get("packages"), list):
        return "spdx"
    return None


def _component_type(raw: Any) -> str:
    value = str(raw or "").strip().lower().replace("_", "-")
    return value if value in COMPONENT_TYPES else "library"


def _license_names(entries: Any) -> list[str]:
    """License identifiers from a list of strings or objects ({license: {id|name}}, {id}, {name}, {expression})."""
    if isinstance(entries, (str, dict)):
        entries = [entries]
    if not isinstance(entries, list):
        return []
    names: list[str] = []
    for entry in entries:
        if isinstance(entry, str):
            names.append(entry)
        elif isinstance(entry, dict):
            inner = entry.get("license")
            if isinstance(inner, dict):
                names.append(inner.get("id") or inner.get("name") or "")
            elif isinstance(inner, str):
                names.append(inner)
            else:
                names.append(
                    entry.get("expression")
                    or entry.get("id")
                    or entry.get("name")
                    or entry.get("spdxExpression")
                    or entry.get("value")
                    or ""
                )
    return [n.strip() for n in names if isinstance(n, str) and n.strip()]


def _make_component(
    name: Any,
    version: Any,
    purl: Any,
    comp_type: Any,
    licenses: Iterable[str],
    bom_ref: Any = None,
) -> Component | None:
    if not isinstance(name, str) or not name.strip():
        return None
    return Component(
        name=name.strip(),
        version=str(version).strip() if version is not None else "",
        package_url=purl.strip() if isinstance(purl, str) and purl.strip() else None,
        type=_component_type(comp_type),
        licenses=tuple(sorted(set(licenses))),
        bom_ref=str(bom_ref) if bom_ref else None,
    )


def _parse_cyclonedx(document: dict[str, Any]) -> list[Component]:
    components: list[Component] = []
    stack = list(as_list(document.get("components")))
    while stack:
        comp = stack.pop(0)
        if not isinstance(comp, dict):
            continue
        parsed = _make_component(
            comp.get("name"),
            comp.get("version"),
            comp.get("purl"),
            comp.get("type"),
            _license_names(comp.get("licenses")),
            comp.get("bom-ref"),
        )
        if parsed is not None:
            components.append(parsed)
        nested = comp.get("components")
        if isinstance(nested, list):
            stack.extend(nested)
    return components


def _spdx_purl(package: dict[str, Any]) -> str | None:
    for ref in as_list(package.get("externalRefs")):
        if isinstance(ref, dict) and str(ref.get("referenceType", "")).lower() == "purl":
            return ref.get("referenceLocator")
    return None


def _parse_spdx(document: dict[str, Any]) -> list[Component]:
    components: list[Component] = []
    for package in as_list(document.get("packages")):
        if not isinstance(package, dict):
            continue
        licenses = [
            package.get(field)
            for field in ("licenseConcluded", "licenseDeclared")
            if isinstance(package.get(field), str)
        ]
        parsed = _make_component(
            package.get("name"),
            package.get("versionInfo"),
            _spdx_purl(package),
            package.get("primaryPackagePurpose"),
            [lic.strip() for lic in licenses if lic.strip() not in _SPDX_NO_LICENSE],
            package.get("SPDXID"),
        )
        if parsed is not None:
            components.append(parsed)
    return components


def _parse_syft(document: dict[str, Any]) -> list[Component]:
    components: list[Component] = []
    for artifact in as_list(document.get("artifacts")):
        if not isinstance(artifact, dict):
            continue
        # Syft's artifact type is the ecosystem (npm, python, deb); components are libraries.
        parsed = _make_component(
            artifact.get("name"),
            artifact.get("version"),
            artifact.get("purl"),
            "library",
            _license_names(artifact.get("licenses")),
            artifact.get("id"),
        )
        if parsed is not None:
            components.append(parsed)
    return components


_PARSERS = {
    "cyclonedx": _parse_cyclonedx,
    "spdx": _parse_spdx,
    "syft": _parse_syft,
}


def parse_sbom(document: Any) -> list[Component]:
    """Parse one SBOM document. Raises MalformedSbom for unrecognized documents."""
    sbom_format = detect_format(document)
    if sbom_format is None:
        raise MalformedSbom("SBOM is not a CycloneDX, SPDX or Syft JSON document")
    components = _PARSERS[sbom_format](document)
    logger.debug(
        "Parsed SBOM",
        extra={"sbom_format": sbom_format, "component_count": len(components)},
    )
    return components


def parse_sboms(documents: Iterable[Any]) -> list[Component]:
    """Parse several SBOMs into one de-duplicated component list sorted by name, version, purl."""
    seen: dict[tuple[str, str, str], Component] = {}
    for document in documents:
        for component in parse_sbom(document):
            key = (component.name, component.version, component.package_url or "")
            seen.setdefault(key, component)
    return [seen[key] for key in sorted(seen)]

"""
License categorization for SBOM components.

Identifiers and expressions are matched by keyword, checked in the order permissive, weak
copyleft, strong copyleft, proprietary. LGPL is therefore weak copyleft even though it
contains "GPL". A component's category is the most restrictive one among its licenses.
"""

from collections.abc import Iterable

from prism.schemas.findings import LICENSE_CATEGORIES, Component, LicenseCategory

_CATEGORY_KEYWORDS: tuple[tuple[LicenseCategory, tuple[str, ...]], ...] = (
    ("permissive", ("MIT", "APACHE", "BSD", "ISC", "UNLICENSE", "0BSD")),
    ("weak_copyleft", ("LGPL", "MPL", "EPL", "CDDL")),
    ("strong_copyleft", ("GPL", "AGPL", "SSPL")),
    ("proprietary", ("COMMERCIAL", "PROPRIETARY")),
)

# Higher = more restrictive.
_RESTRICTIVENESS: dict[str, int] = {
    "permissive": 0,
    "unknown": 1,
    "weak_copyleft": 2,
    "proprietary": 3,
    "strong_copyleft": 4,
}


def license_category(identifier: str | None) -> LicenseCategory:
    """Category of one license identifier or expression; unknown when nothing matches."""
    if not identifier:
        return "unknown"
    upper = identifier.upper()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in upper for k in keywords):
            return category
    return "unknown"


def component_license_category(component: Component) -> LicenseCategory:
    if not component.licenses:
        return "unknown"
    return max((license_category(lic) for lic in component.licenses), key=_RESTRICTIVENESS.__getitem__)


def license_summary(components: Iterable[Component]) -> dict[str, int]:
    """Component count per license category, zero-filled, in category order."""
    counts = {category: 0 for category in LICENSE_CATEGORIES}
    for component in components:
        counts[component_license_category(component)] += 1
    return counts

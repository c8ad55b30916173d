"""Shared helpers for scanner parsers: severity mapping, advisory IDs, value coercion."""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from prism.schemas.findings import ScanSource, SeverityLevel

# Severity aliases shared by every source (case-insensitive) -> canonical level.
# Parsers layer their own table on top of this one.
COMMON_SEVERITY_ALIASES: dict[str, SeverityLevel] = {
    "critical": "critical",
    "crit": "critical",
    "high": "high",
    "important": "high",
    "medium": "medium",
    "med": "medium",
    "moderate": "medium",
    "low": "low",
    "info": "low",
    "informational": "low",
    "negligible": "low",
    "none": "low",
}

# CVSS score bands -> severity (used when the severity string is missing).
_CVSS_TO_SEVERITY: list[tuple[float, SeverityLevel]] = [
    (9.0, "critical"),
    (7.0, "high"),
    (4.0, "medium"),
    (0.0, "low"),
]

_UNKNOWN_SEVERITY: SeverityLevel = "low"

_CVE_PATTERN = re.compile(r"CVE-\d{4}-\d{4,}", re.IGNORECASE)
_GHSA_PATTERN = re.compile(r"GHSA-[a-z0-9]{4}-[a-z0-9]{4}-[a-z0-9]{4}", re.IGNORECASE)

MAX_ADVISORY_ID_LENGTH = 255
MAX_TITLE_LENGTH = 200


class MalformedPayload(Exception):
    """Raised when a scan payload is not JSON or lacks the structure declared for its source."""

    def __init__(self, source: ScanSource, message: str) -> None:
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


def severity_from_cvss(score: float | None) -> SeverityLevel | None:
    """Band a CVSS score into a severity level; None when the score is missing or out of range."""
    if score is None or not 0 <= score <= 10:
        return None
    for floor, level in _CVSS_TO_SEVERITY:
        if score >= floor:
            return level
    return None


def normalize_severity(
    raw_severity: Any,
    cvss_score: float | None = None,
    aliases: Mapping[str, SeverityLevel] | None = None,
) -> tuple[SeverityLevel, bool]:
    """
    Map a reported severity to (canonical level, severity_unknown).

    The string is looked up case-insensitively in aliases (falling back to the common table).
    A missing string falls back to CVSS bands. Anything unrecognized is low + unknown.
    """
    table = aliases if aliases is not None else COMMON_SEVERITY_ALIASES
    text = str_or_none(raw_severity)
    if text is not None:
        level = table.get(text.lower())
        if level is not None:
            return level, False
        return _UNKNOWN_SEVERITY, True
    banded = severity_from_cvss(cvss_score)
    if banded is not None:
        return banded, False
    return _UNKNOWN_SEVERITY, True


def is_cve(value: str | None) -> bool:
    return bool(value) and _CVE_PATTERN.fullmatch(value.strip()) is not None


def normalize_advisory_id(value: Any) -> str | None:
    """Strip and canonicalize an advisory ID: CVE upper-case, GHSA body lower-case, others as-is."""
    text = str_or_none(value)
    if text is None or len(text) > MAX_ADVISORY_ID_LENGTH:
        return None
    if _CVE_PATTERN.fullmatch(text):
        return text.upper()
    if _GHSA_PATTERN.fullmatch(text):
        return "GHSA-" + text[5:].lower()
    return text


def extract_cve(text: str | None) -> str | None:
    """Return the first CVE identifier found in text (upper-cased), or None."""
    if not text or not isinstance(text, str):
        return None
    match = _CVE_PATTERN.search(text)
    return match.group(0).upper() if match else None


def canonical_advisory_id(
    raw_id: Any,
    aliases: Iterable[Any] = (),
) -> tuple[str | None, tuple[str, ...]]:
    """
    Pick the canonical advisory ID for a finding and return it with the remaining aliases.

    CVE IDs win: a vendor ID embedding a CVE (DEBIAN-CVE-2025-10148) yields the CVE, and a
    GHSA/vendor ID with a CVE alias is replaced by the alias.
    """
    primary = normalize_advisory_id(raw_id)
    alias_ids = {a for a in (normalize_advisory_id(x) for x in aliases) if a}
    cve_aliases = sorted(a for a in alias_ids if is_cve(a))

    chosen = primary
    if primary is None:
        chosen = cve_aliases[0] if cve_aliases else (min(alias_ids) if alias_ids else None)
    elif not is_cve(primary):
        embedded = extract_cve(primary)
        if embedded:
            chosen = embedded
        elif cve_aliases:
            chosen = cve_aliases[0]

    others = alias_ids | ({primary} if primary else set())
    others.discard(chosen)
    return chosen, tuple(sorted(others))


def str_or_none(value: Any) -> str | None:
    """Return a stripped string or None; numbers are coerced, containers are not."""
    if value is None or isinstance(value, (dict, list, tuple, set, bool)):
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value).strip() or None


def float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if 0 <= number <= 10 else None


def str_tuple(value: Any) -> tuple[str, ...]:
    """Coerce a list-ish value to a tuple of unique non-empty strings, keeping first-seen order."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return ()
    seen: dict[str, None] = {}
    for item in value:
        text = str_or_none(item)
        if text is not None:
            seen.setdefault(text, None)
    return tuple(seen)


def title_from(title: Any, description: Any) -> str:
    """Use the title when present, else the first line of the description (bounded)."""
    text = str_or_none(title)
    if text:
        return text[:MAX_TITLE_LENGTH]
    desc = str_or_none(description)
    if not desc:
        return ""
    return desc.splitlines()[0].strip()[:MAX_TITLE_LENGTH]


def pick(obj: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present, non-None value among keys (scanners vary key casing)."""
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def as_dict(value: Any) -> dict[str, Any]:
    """Return value when it is a dict, else an empty dict (for optional nested objects)."""
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    """Return value when it is a list, else an empty list (for optional nested arrays)."""
    return value if isinstance(value, list) else []

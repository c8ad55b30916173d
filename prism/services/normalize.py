"""Normalize raw scanner payloads into canonical Finding records."""

import json

from pydantic import ValidationError

from prism.schemas.findings import SCAN_SOURCES, Finding, ScanSource
from prism.services.normalize_utils import MalformedPayload, normalize_severity
from prism.services.scanner_parsers import PARSERS

__all__ = ["MalformedPayload", "normalize", "normalize_severity"]


def normalize(raw_payload: bytes | str, source: ScanSource) -> list[Finding]:
    """
    Parse one source's raw payload and return its findings.

    Raises MalformedPayload when the bytes are not JSON or do not have the structure
    declared for the source. A well-formed payload with no findings returns an empty list.
    The input is never modified; each call builds new Finding values.
    """
    if source not in SCAN_SOURCES:
        raise ValueError(f"Unknown scan source {source!r}; expected one of {list(SCAN_SOURCES)}")
    if isinstance(raw_payload, bytes):
        try:
            text = raw_payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedPayload(source, f"payload is not UTF-8: {e!s}") from e
    else:
        text = raw_payload
    if not text.strip():
        raise MalformedPayload(source, "payload is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayload(source, f"invalid JSON: {e!s}") from e
    try:
        return PARSERS[source].parse(data)
    except ValidationError as e:
        raise MalformedPayload(source, f"finding failed validation: {e.error_count()} error(s)") from e

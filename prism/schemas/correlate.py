"""Request schemas for the correlate endpoint."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, HttpUrl, model_validator

from prism.schemas.findings import ScanSource


class ScanPayloadIn(BaseModel):
    """One scanner report: inline JSON (payload), inline text (raw), or a URL to fetch it from."""

    source: ScanSource = Field(..., description="Which scanner family produced the report.")
    payload: Any = Field(default=None, description="Scanner report as a JSON value.")
    raw: str | None = Field(
        default=None,
        description="Scanner report as unparsed text; parsed like a fetched payload.",
    )
    url: HttpUrl | None = Field(default=None, description="Location to fetch the report from.")

    @model_validator(mode="after")
    def exactly_one_origin(self) -> "ScanPayloadIn":
        given = [
            name
            for name in ("payload", "raw", "url")
            if name in self.model_fields_set and getattr(self, name) is not None
        ]
        if "payload" in self.model_fields_set and self.payload is None and not given:
            # An explicit JSON null is a payload; the normalizer rejects it per source.
            given = ["payload"]
        if len(given) != 1:
            raise ValueError("Exactly one of payload, raw or url must be provided.")
        return self


class CorrelateRequest(BaseModel):
    """Body of POST /correlate."""

    target_key: str = Field(
        ...,
        min_length=1,
        max_length=1024,
        description="Scanned artifact identity (image digest/tag or repo@commit).",
    )
    sboms: list[dict[str, Any]] = Field(
        default_factory=list,
        description="SBOM documents (CycloneDX, SPDX or Syft JSON) describing the target.",
    )
    scan_payloads: list[ScanPayloadIn] = Field(
        default_factory=list,
        description="Scanner reports to normalize and correlate.",
    )
    scanned_at: datetime | None = Field(
        default=None,
        description="Scan completion time; defaults to the time the request is processed.",
    )

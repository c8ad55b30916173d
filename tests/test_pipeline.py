"""Tests for prism.services.pipeline: concurrent fetch/normalize, partial results, determinism."""

import asyncio
import json
import unittest
from datetime import UTC, datetime

import httpx

from prism.schemas.correlate import ScanPayloadIn
from prism.schemas.findings import Component
from prism.services.fetch import SourceFetch, SourceFetchError, build_fetches, http_fetch, text_fetch
from prism.services.pipeline import RawPayload, correlate, correlate_payloads, raw_fetches

SCANNED_AT = datetime(2026, 3, 1, 8, 30, tzinfo=UTC)

CONTAINER_PAYLOAD = json.dumps(
    {
        "Results": [
            {
                "Target": "app:1.0",
                "Vulnerabilities": [
                    {
                        "VulnerabilityID": "CVE-2024-0001",
                        "PkgName": "openssl",
                        "InstalledVersion": "3.1.4",
                        "Severity": "HIGH",
                    },
                    {
                        "VulnerabilityID": "CVE-2024-0002",
                        "PkgName": "zlib",
                        "InstalledVersion": "1.2.13",
                        "Severity": "LOW",
                    },
                ],
            }
        ]
    }
)

ADVISORY_PAYLOAD = json.dumps(
    [
        {
            "component": "openssl",
            "version": "3.1.4",
            "vulnerabilities": [{"id": "CVE-2024-0001", "database_specific": {"severity": "high"}}],
        }
    ]
)

COMPONENTS = [Component(name="openssl", version="3.1.4"), Component(name="zlib", version="1.2.13")]


class _Settings:
    MAX_PAYLOAD_BYTES = 1024 * 1024
    SOURCE_FETCH_TIMEOUT_SEC = 5.0


def _failing_fetch(message: str):
    async def _fetch() -> bytes:
        raise SourceFetchError(message)

    return _fetch


def _slow_fetch(delay: float):
    async def _fetch() -> str:
        await asyncio.sleep(delay)
        return "[]"

    return _fetch


class TestCorrelatePayloads(unittest.TestCase):
    """Synchronous entry point over in-memory payloads."""

    def test_same_advisory_from_two_sources_merges(self) -> None:
        result = correlate_payloads(
            "app@sha256:1",
            COMPONENTS,
            [RawPayload("container-scan", CONTAINER_PAYLOAD), RawPayload("advisory-db", ADVISORY_PAYLOAD)],
            scanned_at=SCANNED_AT,
        )
        by_id = {v.canonical_id: v for v in result.correlated_vulnerabilities}
        self.assertEqual(set(by_id), {"CVE-2024-0001", "CVE-2024-0002"})
        self.assertEqual(by_id["CVE-2024-0001"].sources, ("advisory-db", "container-scan"))
        self.assertEqual(by_id["CVE-2024-0001"].severity, "high")
        self.assertEqual(by_id["CVE-2024-0001"].component_ref.key, "openssl@3.1.4")
        self.assertEqual(result.summary.finding_count, 3)
        self.assertEqual(result.summary.matched_finding_count, 3)
        self.assertEqual(result.summary.unmatched_finding_count, 0)
        self.assertFalse(result.summary.partial)

    def test_identical_input_gives_identical_result(self) -> None:
        payloads = [RawPayload("container-scan", CONTAINER_PAYLOAD), RawPayload("advisory-db", ADVISORY_PAYLOAD)]
        first = correlate_payloads("t", COMPONENTS, payloads, scanned_at=SCANNED_AT)
        second = correlate_payloads("t", COMPONENTS, list(reversed(payloads)), scanned_at=SCANNED_AT)
        self.assertEqual(first.model_dump_json(), second.model_dump_json())
        self.assertEqual(first.content_hash, second.content_hash)

    def test_empty_array_is_clean_scan(self) -> None:
        result = correlate_payloads("t", COMPONENTS, [RawPayload("container-scan", b"[]")], scanned_at=SCANNED_AT)
        status = {s.source: s for s in result.summary.source_status}
        self.assertTrue(status["container-scan"].scanned)
        self.assertTrue(status["container-scan"].no_findings)
        self.assertFalse(status["container-scan"].scan_failed)
        self.assertFalse(status["advisory-db"].scanned)
        self.assertFalse(result.summary.partial)
        self.assertEqual(result.correlated_vulnerabilities, [])

    def test_malformed_payload_marks_source_failed(self) -> None:
        with self.assertLogs("prism.services.pipeline", level="WARNING"):
            result = correlate_payloads(
                "t",
                COMPONENTS,
                [RawPayload("container-scan", CONTAINER_PAYLOAD), RawPayload("static-analysis", "<xml/>")],
                scanned_at=SCANNED_AT,
            )
        self.assertTrue(result.summary.partial)
        self.assertEqual(result.summary.failed_sources, ["static-analysis"])
        self.assertEqual(result.summary.total, 2)

    def test_scalar_optional_field_keeps_every_source(self) -> None:
        grype = json.dumps(
            {"matches": [{"vulnerability": {"id": "CVE-2024-1000", "cvss": 7}, "artifact": {"name": "lodash"}}]}
        )
        result = correlate_payloads(
            "t",
            COMPONENTS,
            [RawPayload("source-scan", grype), RawPayload("container-scan", CONTAINER_PAYLOAD)],
            scanned_at=SCANNED_AT,
        )
        self.assertFalse(result.summary.partial)
        ids = {v.canonical_id for v in result.correlated_vulnerabilities}
        self.assertEqual(ids, {"CVE-2024-0001", "CVE-2024-0002", "CVE-2024-1000"})

    def test_trivy_report_without_results_is_clean_scan(self) -> None:
        report = json.dumps({"SchemaVersion": 2, "ArtifactName": "alpine:3.20", "ArtifactType": "container_image"})
        result = correlate_payloads("img", [], [RawPayload("container-scan", report)], scanned_at=SCANNED_AT)
        status = {s.source: s for s in result.summary.source_status}
        self.assertTrue(status["container-scan"].no_findings)
        self.assertFalse(status["container-scan"].scan_failed)
        self.assertFalse(result.summary.partial)

    def test_scanned_at_defaults_to_now(self) -> None:
        result = correlate_payloads("t", COMPONENTS, [])
        self.assertIsNotNone(result.scanned_at.tzinfo)


class TestCorrelateAsync(unittest.TestCase):
    """Concurrent fetches; a failed or slow source does not sink the run."""

    def test_failed_advisory_fetch_gives_partial_result(self) -> None:
        fetches = [
            SourceFetch("container-scan", text_fetch(CONTAINER_PAYLOAD)),
            SourceFetch("advisory-db", _failing_fetch("GET https://osv.example returned status 503"), "https://osv.example"),
        ]
        result = asyncio.run(correlate("app@sha256:2", COMPONENTS, fetches, scanned_at=SCANNED_AT))
        self.assertTrue(result.summary.partial)
        self.assertEqual(result.summary.failed_sources, ["advisory-db"])
        self.assertEqual({v.canonical_id for v in result.correlated_vulnerabilities}, {"CVE-2024-0001", "CVE-2024-0002"})
        status = {s.source: s for s in result.summary.source_status}
        self.assertIn("503", status["advisory-db"].error)

    def test_timeout_marks_source_failed(self) -> None:
        fetches = [
            SourceFetch("container-scan", text_fetch(CONTAINER_PAYLOAD)),
            SourceFetch("source-scan", _slow_fetch(5.0)),
        ]
        result = asyncio.run(correlate("t", COMPONENTS, fetches, timeout=0.05, scanned_at=SCANNED_AT))
        self.assertEqual(result.summary.failed_sources, ["source-scan"])
        status = {s.source: s for s in result.summary.source_status}
        self.assertIn("timed out", status["source-scan"].error)

    def test_async_and_sync_agree(self) -> None:
        payloads = [RawPayload("container-scan", CONTAINER_PAYLOAD), RawPayload("advisory-db", ADVISORY_PAYLOAD)]
        sync_result = correlate_payloads("t", COMPONENTS, payloads, scanned_at=SCANNED_AT)
        async_result = asyncio.run(correlate("t", COMPONENTS, raw_fetches(payloads), scanned_at=SCANNED_AT))
        self.assertEqual(sync_result, async_result)

    def test_one_failed_payload_of_two_for_same_source(self) -> None:
        fetches = [
            SourceFetch("container-scan", text_fetch(CONTAINER_PAYLOAD)),
            SourceFetch("container-scan", text_fetch("{broken")),
        ]
        result = asyncio.run(correlate("t", COMPONENTS, fetches, scanned_at=SCANNED_AT))
        status = {s.source: s for s in result.summary.source_status}
        self.assertTrue(status["container-scan"].scan_failed)
        self.assertEqual(status["container-scan"].finding_count, 2)
        self.assertFalse(status["container-scan"].no_findings)


class TestHttpFetch(unittest.TestCase):
    """http_fetch over an httpx mock transport."""

    def _client(self, handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    def test_returns_body_on_200(self) -> None:
        async def run() -> bytes:
            async with self._client(lambda request: httpx.Response(200, content=b"[]")) as client:
                return await http_fetch("https://scans.example/a.json", 1024, 5.0, client)()

        self.assertEqual(asyncio.run(run()), b"[]")

    def test_non_200_raises(self) -> None:
        async def run() -> None:
            async with self._client(lambda request: httpx.Response(404)) as client:
                await http_fetch("https://scans.example/missing.json", 1024, 5.0, client)()

        with self.assertRaises(SourceFetchError) as ctx:
            asyncio.run(run())
        self.assertIn("404", ctx.exception.message)

    def test_oversized_body_raises(self) -> None:
        async def run() -> None:
            async with self._client(lambda request: httpx.Response(200, content=b"x" * 4096)) as client:
                await http_fetch("https://scans.example/big.json", 1024, 5.0, client)()

        with self.assertRaises(SourceFetchError):
            asyncio.run(run())

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def run() -> None:
            async with self._client(handler) as client:
                await http_fetch("https://scans.example/a.json", 1024, 5.0, client)()

        with self.assertRaises(SourceFetchError):
            asyncio.run(run())


class TestBuildFetches(unittest.TestCase):
    def test_origins(self) -> None:
        items = [
            ScanPayloadIn(source="container-scan", payload=[]),
            ScanPayloadIn(source="advisory-db", raw="[]"),
            ScanPayloadIn(source="source-scan", url="https://scans.example/sca.json"),
        ]
        fetches = build_fetches(items, _Settings())
        self.assertEqual([f.source for f in fetches], ["container-scan", "advisory-db", "source-scan"])
        self.assertEqual([f.origin for f in fetches], ["inline", "raw", "https://scans.example/sca.json"])
        self.assertEqual(asyncio.run(fetches[0].fetch()), "[]")


if __name__ == "__main__":
    unittest.main()

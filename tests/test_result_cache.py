"""Unit tests for prism.services.result_cache: last-writer-wins, history, idempotent puts, SQL store."""

import threading
import unittest
from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from prism.models import Base, ScanResultRecord
from prism.schemas.findings import CorrelatedVulnerability
from prism.schemas.results import ScanTargetResult
from prism.services.aggregation import aggregate
from prism.services.result_cache import (
    InMemoryResultStore,
    ResultCache,
    SqlResultStore,
    compute_content_hash,
)

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _result(
    target_key: str = "registry.example.com/app@sha256:abc",
    scanned_at: datetime = T0,
    ids: tuple[str, ...] = ("CVE-2024-0001",),
) -> ScanTargetResult:
    """Build a ScanTargetResult with one unattributed vulnerability per id."""
    vulns = [
        CorrelatedVulnerability(canonical_id=i, severity="high", sources=("container-scan",), finding_count=1)
        for i in ids
    ]
    summary = aggregate(vulns)
    return ScanTargetResult(
        target_key=target_key,
        scanned_at=scanned_at,
        correlated_vulnerabilities=vulns,
        summary=summary,
        content_hash=compute_content_hash(vulns, summary),
    )


class TestContentHash(unittest.TestCase):
    def test_identical_content_same_hash(self) -> None:
        self.assertEqual(_result(scanned_at=T0).content_hash, _result(scanned_at=T0 + timedelta(hours=1)).content_hash)

    def test_different_content_different_hash(self) -> None:
        self.assertNotEqual(_result(ids=("CVE-1",)).content_hash, _result(ids=("CVE-2",)).content_hash)


class TestResultCacheSemantics(unittest.TestCase):
    """Behaviour shared by every store; runs against the in-memory store."""

    def make_cache(self) -> ResultCache:
        return ResultCache(InMemoryResultStore())

    def test_get_missing_returns_none(self) -> None:
        self.assertIsNone(self.make_cache().get("unknown"))

    def test_put_then_get(self) -> None:
        cache = self.make_cache()
        result = _result()
        self.assertTrue(cache.put(result.target_key, result))
        self.assertEqual(cache.get(result.target_key), result)

    def test_newer_result_replaces_current(self) -> None:
        cache = self.make_cache()
        old = _result(scanned_at=T0, ids=("CVE-1",))
        new = _result(scanned_at=T0 + timedelta(minutes=5), ids=("CVE-2",))
        cache.put(old.target_key, old)
        self.assertTrue(cache.put(new.target_key, new))
        self.assertEqual(cache.get(new.target_key), new)
        self.assertEqual(cache.history(new.target_key), [new, old])

    def test_stale_write_kept_in_history_but_not_current(self) -> None:
        cache = self.make_cache()
        new = _result(scanned_at=T0 + timedelta(minutes=5), ids=("CVE-2",))
        old = _result(scanned_at=T0, ids=("CVE-1",))
        cache.put(new.target_key, new)
        with self.assertLogs("prism.services.result_cache", level="WARNING") as logs:
            self.assertFalse(cache.put(old.target_key, old))
        self.assertIn("Cache write conflict", logs.output[0])
        self.assertEqual(cache.get(new.target_key), new)
        self.assertEqual(len(cache.history(new.target_key)), 2)

    def test_equal_timestamps_last_write_wins(self) -> None:
        cache = self.make_cache()
        first = _result(ids=("CVE-1",))
        second = _result(ids=("CVE-2",))
        cache.put(first.target_key, first)
        self.assertTrue(cache.put(second.target_key, second))
        self.assertEqual(cache.get(first.target_key), second)

    def test_identical_put_is_idempotent(self) -> None:
        cache = self.make_cache()
        result = _result()
        cache.put(result.target_key, result)
        cache.put(result.target_key, result)
        self.assertEqual(cache.get(result.target_key), result)
        self.assertEqual(len(cache.history(result.target_key)), 1)

    def test_rescan_with_same_findings_differs_only_in_scanned_at(self) -> None:
        cache = self.make_cache()
        first = _result(scanned_at=T0)
        second = _result(scanned_at=T0 + timedelta(hours=1))
        cache.put(first.target_key, first)
        got_first = cache.get(first.target_key)
        cache.put(second.target_key, second)
        got_second = cache.get(second.target_key)
        self.assertEqual(
            got_first.model_dump(exclude={"scanned_at"}),
            got_second.model_dump(exclude={"scanned_at"}),
        )

    def test_mismatched_key_raises(self) -> None:
        with self.assertRaises(ValueError):
            self.make_cache().put("other-target", _result())

    def test_targets_are_independent(self) -> None:
        cache = self.make_cache()
        a = _result(target_key="repo-a@1111")
        b = _result(target_key="repo-b@2222", ids=("CVE-9",))
        cache.put(a.target_key, a)
        cache.put(b.target_key, b)
        self.assertEqual(cache.get("repo-a@1111"), a)
        self.assertEqual(cache.get("repo-b@2222"), b)

    def test_history_limit(self) -> None:
        cache = self.make_cache()
        for i in range(5):
            r = _result(scanned_at=T0 + timedelta(minutes=i), ids=(f"CVE-{i}",))
            cache.put(r.target_key, r)
        history = cache.history(_result().target_key, limit=3)
        self.assertEqual([r.scanned_at for r in history], [T0 + timedelta(minutes=i) for i in (4, 3, 2)])

    def test_concurrent_puts_latest_scanned_at_wins(self) -> None:
        cache = self.make_cache()
        results = [_result(scanned_at=T0 + timedelta(seconds=i), ids=(f"CVE-{i}",)) for i in range(16)]
        threads = [threading.Thread(target=cache.put, args=(r.target_key, r)) for r in reversed(results)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(cache.get(results[0].target_key), results[-1])
        self.assertEqual(len(cache.history(results[0].target_key, limit=100)), 16)


class TestLockStripes(unittest.TestCase):
    def test_lock_pool_does_not_grow_with_targets(self) -> None:
        cache = ResultCache(InMemoryResultStore(), lock_stripes=4)
        for i in range(50):
            r = _result(target_key=f"repo-{i}@abc")
            cache.put(r.target_key, r)
        self.assertEqual(len(cache._locks), 4)
        self.assertIs(cache._lock_for("repo-7@abc"), cache._lock_for("repo-7@abc"))

    def test_single_stripe_keeps_targets_independent(self) -> None:
        cache = ResultCache(InMemoryResultStore(), lock_stripes=1)
        a = _result(target_key="a@1", ids=("CVE-A",))
        b = _result(target_key="b@1", ids=("CVE-B",))
        self.assertTrue(cache.put(a.target_key, a))
        self.assertTrue(cache.put(b.target_key, b))
        self.assertEqual(cache.get("a@1"), a)
        self.assertEqual(cache.get("b@1"), b)

    def test_zero_stripes_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ResultCache(lock_stripes=0)


class TestSqlResultStore(TestResultCacheSemantics):
    """Same semantics backed by SQLAlchemy (SQLite in memory)."""

    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    def tearDown(self) -> None:
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def make_cache(self) -> ResultCache:
        return ResultCache(SqlResultStore(self.session_factory))

    def test_rows_are_appended(self) -> None:
        cache = self.make_cache()
        r1 = _result(scanned_at=T0, ids=("CVE-1",))
        r2 = _result(scanned_at=T0 + timedelta(minutes=1), ids=("CVE-2",))
        cache.put(r1.target_key, r1)
        cache.put(r2.target_key, r2)
        session = self.session_factory()
        try:
            rows = session.query(ScanResultRecord).order_by(ScanResultRecord.id).all()
            self.assertEqual([row.content_hash for row in rows], [r1.content_hash, r2.content_hash])
            self.assertFalse(rows[0].partial)
        finally:
            session.close()


if __name__ == "__main__":
    unittest.main()

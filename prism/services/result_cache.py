"""
Versioned per-target result cache.

Storage is append-only: every accepted put adds a version, and the current result for a
target is the one with the latest scanned_at. When two versions carry the same scanned_at the
one written last wins; racing scans of one target with equal timestamps are an accepted race
resolved that way. A put older than the current result still lands in history but does not
become current; that is logged as a cache write conflict and never raised.
"""

import hashlib
import json
import logging
import threading
import zlib
from collections import defaultdict
from collections.abc import Callable, Sequence
from typing import Protocol

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from prism.models import ScanResultRecord
from prism.schemas.findings import CorrelatedVulnerability
from prism.schemas.results import ScanTargetResult, Summary

logger = logging.getLogger(__name__)

DEFAULT_LOCK_STRIPES = 64


def compute_content_hash(
    vulnerabilities: Sequence[CorrelatedVulnerability],
    summary: Summary,
) -> str:
    """SHA-256 over the canonical JSON of vulnerabilities and summary (scanned_at excluded)."""
    document = {
        "correlated_vulnerabilities": [v.model_dump(mode="json") for v in vulnerabilities],
        "summary": summary.model_dump(mode="json"),
    }
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResultStore(Protocol):
    """Append-only storage of result versions."""

    def append(self, result: ScanTargetResult) -> None: ...

    def latest(self, target_key: str) -> ScanTargetResult | None: ...

    def history(self, target_key: str, limit: int) -> list[ScanTargetResult]: ...

    def ping(self) -> bool: ...


class InMemoryResultStore:
    """Process-local store for tests and embedding."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self._versions: defaultdict[str, list[tuple[int, ScanTargetResult]]] = defaultdict(list)

    def append(self, result: ScanTargetResult) -> None:
        with self._lock:
            self._seq += 1
            self._versions[result.target_key].append((self._seq, result))

    def _ordered(self, target_key: str) -> list[ScanTargetResult]:
        with self._lock:
            versions = list(self._versions.get(target_key, []))
        versions.sort(key=lambda v: (v[1].scanned_at, v[0]), reverse=True)
        return [result for _, result in versions]

    def latest(self, target_key: str) -> ScanTargetResult | None:
        ordered = self._ordered(target_key)
        return ordered[0] if ordered else None

    def history(self, target_key: str, limit: int) -> list[ScanTargetResult]:
        return self._ordered(target_key)[: max(limit, 0)]

    def ping(self) -> bool:
        return True


class SqlResultStore:
    """Store backed by the scan_results table; ordering is scanned_at desc, id desc."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, result: ScanTargetResult) -> None:
        session = self._session_factory()
        try:
            session.add(
                ScanResultRecord(
                    target_key=result.target_key,
                    scanned_at=result.scanned_at,
                    content_hash=result.content_hash,
                    partial=result.summary.partial,
                    result=result.model_dump(mode="json"),
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def history(self, target_key: str, limit: int) -> list[ScanTargetResult]:
        session = self._session_factory()
        try:
            rows = session.scalars(
                select(ScanResultRecord)
                .where(ScanResultRecord.target_key == target_key)
                .order_by(ScanResultRecord.scanned_at.desc(), ScanResultRecord.id.desc())
                .limit(max(limit, 0))
            ).all()
            return [ScanTargetResult.model_validate(row.result) for row in rows]
        finally:
            session.close()

    def latest(self, target_key: str) -> ScanTargetResult | None:
        rows = self.history(target_key, 1)
        return rows[0] if rows else None

    def ping(self) -> bool:
        session = self._session_factory()
        try:
            session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.warning("Result store unreachable", exc_info=True)
            return False
        finally:
            session.close()


class ResultCache:
    """
    put/get/history over a ResultStore. Writes to one target_key are serialized by a lock
    taken from a fixed pool of stripes; unrelated keys may share a stripe.

    Reads go straight to the store and see either the previous or the new version, never
    a partial one.
    """

    def __init__(self, store: ResultStore | None = None, lock_stripes: int = DEFAULT_LOCK_STRIPES) -> None:
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be at least 1")
        self._store: ResultStore = store if store is not None else InMemoryResultStore()
        # Fixed pool: memory stays bounded however many targets are written.
        self._locks: tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(lock_stripes))
        self.conflict_count = 0

    def _lock_for(self, target_key: str) -> threading.Lock:
        return self._locks[zlib.crc32(target_key.encode("utf-8")) % len(self._locks)]

    def put(self, target_key: str, result: ScanTargetResult) -> bool:
        """
        Store result as a new version of target_key. Returns True when it is now current.

        Writing the exact version that is already current (same scanned_at and content hash)
        is a no-op.
        """
        if result.target_key != target_key:
            raise ValueError(
                f"Result target_key {result.target_key!r} does not match cache key {target_key!r}"
            )
        with self._lock_for(target_key):
            current = self._store.latest(target_key)
            if (
                current is not None
                and current.scanned_at == result.scanned_at
                and current.content_hash == result.content_hash
            ):
                return True
            self._store.append(result)
            if current is not None and result.scanned_at < current.scanned_at:
                self.conflict_count += 1
                logger.warning(
                    "Cache write conflict: stale result kept in history only",
                    extra={
                        "target_key": target_key,
                        "scanned_at": result.scanned_at.isoformat(),
                        "current_scanned_at": current.scanned_at.isoformat(),
                    },
                )
                return False
            logger.info(
                "Cached result",
                extra={
                    "target_key": target_key,
                    "scanned_at": result.scanned_at.isoformat(),
                    "content_hash": result.content_hash,
                },
            )
            return True

    def get(self, target_key: str) -> ScanTargetResult | None:
        """Current (most recent by scanned_at) result for target_key, or None."""
        return self._store.latest(target_key)

    def history(self, target_key: str, limit: int = 20) -> list[ScanTargetResult]:
        """Stored versions, newest first."""
        return self._store.history(target_key, limit)

    def is_reachable(self) -> bool:
        """Whether the backing store answers a trivial query."""
        return self._store.ping()

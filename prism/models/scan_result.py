"""ORM model for versioned per-target correlation results."""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, func

from prism.models.base import Base, JSONDocument


class ScanResultRecord(Base):
    """
    One stored ScanTargetResult. Rows are append-only: every put inserts a row and the
    current result for a target is the row with the latest scanned_at (highest id on ties).
    """

    __tablename__ = "scan_results"
    __table_args__ = (Index("ix_scan_results_target_scanned", "target_key", "scanned_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_key = Column(String(1024), nullable=False, index=True)
    scanned_at = Column(DateTime(timezone=True), nullable=False)
    content_hash = Column(String(64), nullable=False)
    partial = Column(Boolean, nullable=False, default=False)
    result = Column(JSONDocument, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

"""SQLAlchemy ORM models."""

from prism.models.base import Base
from prism.models.scan_result import ScanResultRecord
from prism.models.user import User

__all__ = ["Base", "ScanResultRecord", "User"]

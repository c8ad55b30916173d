"""Settings, database sessions and auth primitives shared by the API and the scripts."""

from prism.core.config import get_settings, settings
from prism.core.database import SessionLocal, get_db
from prism.core.security import ROLES, ROLES_ALLOWED_TO_SUBMIT

__all__ = ["ROLES", "ROLES_ALLOWED_TO_SUBMIT", "SessionLocal", "get_db", "get_settings", "settings"]

"""ORM model for API accounts: CI scanners that submit runs and people who read results."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func

from prism.models.base import Base


class User(Base):
    """
    Account for JWT authentication.

    role: 'scanner' may submit correlation runs, 'viewer' may only read results and
    history, 'admin' may do both and list accounts. last_login_at is stamped on each
    successful login so unused CI credentials can be spotted.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('viewer', 'scanner', 'admin')", name="ck_users_role"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="viewer")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

"""JWT login and auth dependencies (get_current_user, require_admin, require_submitter)."""

from datetime import UTC, datetime
from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from prism.core.config import get_settings
from prism.core.database import get_db
from prism.core.security import (
    ROLE_ADMIN,
    ROLES_ALLOWED_TO_SUBMIT,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    create_access_token,
    decode_access_token,
    verify_password,
)
from prism.models.user import User
from prism.schemas.auth import (
    CurrentUser,
    LoginRequest,
    TokenResponse,
    UsersListResponse,
)

router = APIRouter()
security = HTTPBearer(auto_error=False)

# Returned by get_current_user when AUTH_ENABLED is false (local development).
ANONYMOUS_USER = CurrentUser(id=0, username="anonymous", role=ROLE_ADMIN)


def _validate_username(username: str) -> None:
    if not (USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid username length.",
        )


def _validate_password(password: str) -> None:
    if not (PASSWORD_MIN_LEN <= len(password) <= PASSWORD_MAX_LEN):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid password length.",
        )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("", response_model=TokenResponse)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
) -> TokenResponse:
    """
    Authenticate with username and password; returns a JWT access token.
    Include the token in the Authorization header as: Bearer <access_token>
    """
    _validate_username(body.username)
    _validate_password(body.password)

    user = db.query(User).filter(User.username == body.username).first()
    if user is None or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password.",
        )
    user.last_login_at = datetime.now(UTC)
    db.commit()
    token = create_access_token(sub=user.id, role=user.role)
    return TokenResponse(access_token=token, token_type="bearer")


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
) -> CurrentUser:
    """
    Dependency: require a valid Bearer JWT and return the current user. Raises 401 if missing
    or invalid. With AUTH_ENABLED=false every request runs as an anonymous admin.
    """
    if not get_settings().AUTH_ENABLED:
        return ANONYMOUS_USER
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise _unauthorized("Invalid or expired token")
    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token payload")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise _unauthorized("User not found")
    return CurrentUser(id=user.id, username=user.username, role=user.role)


def require_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Dependency: require authenticated user with role 'admin'. Raises 403 for non-admin."""
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def require_submitter(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Dependency: require a role allowed to submit correlation runs (scanner or admin)."""
    if current_user.role not in ROLES_ALLOWED_TO_SUBMIT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Scanner or admin role required",
        )
    return current_user


@router.get("/users", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> UsersListResponse:
    """List all users (admin only)."""
    users = db.query(User).order_by(User.id).all()
    return UsersListResponse(users=[CurrentUser.model_validate(u) for u in users])

"""
Create a user (e.g. first admin). Run from project root:
  python -m prism.scripts.create_user USERNAME PASSWORD [role]
Example:
  python -m prism.scripts.create_user ci-runner your-secure-password scanner
"""
import argparse
import sys

from prism.core.database import SessionLocal
from prism.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    ROLE_VIEWER,
    ROLES,
    USERNAME_MAX_LEN,
    hash_password,
)
from prism.models.user import User


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a Prism user (no registration UI).")
    parser.add_argument("username", help=f"Username (1-{USERNAME_MAX_LEN} chars)")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument("role", nargs="?", default=ROLE_VIEWER, choices=list(ROLES))
    args = parser.parse_args()

    username = args.username.strip()
    if not username or len(username) > USERNAME_MAX_LEN:
        print("Invalid username length.", file=sys.stderr)
        return 1
    if not PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN:
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.username == username).first()
        if existing:
            print(f"User '{username}' already exists.", file=sys.stderr)
            return 1
        user = User(
            username=username,
            password_hash=hash_password(args.password),
            role=args.role,
        )
        db.add(user)
        db.commit()
        print(f"Created user '{username}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())

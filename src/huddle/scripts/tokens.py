# src/huddle/scripts/tokens.py
"""
Issue development bearer tokens.

Accounts belong to the external identity service; for local work this script
can create a user row if it is missing and print a token signed with
``SECRET_KEY`` that the WebSocket gateway and the REST API accept.

    python -m huddle.scripts.tokens alice --display-name "Alice" --create
"""

from __future__ import annotations

import argparse
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from huddle.core.security import create_access_token
from huddle.db.session import SessionLocal, create_tables
from huddle.models import User


def ensure_user(db: Session, username: str, display_name: str | None, create: bool) -> User:
    """Return the user with ``username``, creating it when ``create`` is set."""
    user = db.scalar(select(User).where(User.username == username))
    if user is not None:
        return user
    if not create:
        raise SystemExit(f"User {username!r} does not exist (pass --create to add it)")
    user = User(username=username, display_name=display_name or username)
    db.add(user)
    db.commit()
    print(f"Created user {username} with id {user.id}")
    return user


def issue_token(user: User, minutes: int | None) -> str:
    expires = timedelta(minutes=minutes) if minutes else None
    return create_access_token(user.id, expires_delta=expires)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Print a bearer token for a Huddle user")
    parser.add_argument("username")
    parser.add_argument("--display-name", default=None)
    parser.add_argument("--create", action="store_true", help="create the user if missing")
    parser.add_argument("--minutes", type=int, default=None, help="token lifetime")
    args = parser.parse_args(argv)

    create_tables()
    db = SessionLocal()
    try:
        user = ensure_user(db, args.username, args.display_name, args.create)
        print(issue_token(user, args.minutes))
    finally:
        db.close()


if __name__ == "__main__":
    main()

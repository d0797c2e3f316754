# src/wiki_moderation/scripts/tokens.py
"""
Account maintenance for the moderation service.

Creates accounts, grants rights and issues bearer tokens, e.g.:

    python -m wiki_moderation.scripts.tokens alice --rights moderation skip-moderation
"""

from __future__ import annotations

import argparse
from datetime import timedelta

from sqlalchemy.orm import Session

from wiki_moderation.core.security import create_access_token
from wiki_moderation.db.session import SessionLocal
from wiki_moderation.db.time import utcnow
from wiki_moderation.models import FileStash, ModerationEntry, User

STALE_STASH_DAYS = 30


def ensure_user(db: Session, name: str, rights: list[str] | None = None) -> User:
    """Return the account called ``name``, creating it if needed.

    Args:
        db: Database session
        name: User name
        rights: If given, replaces the rights of the account
    """
    user = db.query(User).filter(User.name == name).first()
    if user is None:
        user = User(name=name, rights="")
        db.add(user)
    if rights is not None:
        user.rights = " ".join(sorted(set(rights)))
    db.commit()
    db.refresh(user)
    return user


def cleanup_stale_stash(db: Session) -> int:
    """Delete stashed uploads that no pending entry refers to any more.

    Only stash rows older than a grace period are removed, so an upload
    being queued right now keeps its file.
    """
    cutoff = utcnow() - timedelta(days=STALE_STASH_DAYS)
    pending_keys = (
        db.query(ModerationEntry.stash_key)
        .filter(ModerationEntry.stash_key.is_not(None), ModerationEntry.merged_revid == 0)
        .scalar_subquery()
    )
    deleted = (
        db.query(FileStash)
        .filter(FileStash.timestamp < cutoff, FileStash.stash_key.not_in(pending_keys))
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def main() -> None:
    parser = argparse.ArgumentParser(description="Create an account and print its access token")
    parser.add_argument("name", nargs="?", help="User name")
    parser.add_argument("--rights", nargs="*", default=None, help="Rights to grant")
    parser.add_argument(
        "--cleanup-stash",
        action="store_true",
        help="Delete stashed uploads no longer referenced by pending changes.",
    )
    args = parser.parse_args()

    db = SessionLocal()
    try:
        if args.cleanup_stash:
            print(f"Deleted {cleanup_stale_stash(db)} stale stashed uploads")
        if args.name:
            user = ensure_user(db, args.name, args.rights)
            print(f"User {user.name} (#{user.id}) rights: {user.rights or '-'}")
            print(create_access_token(user.name))
    finally:
        db.close()


if __name__ == "__main__":
    main()

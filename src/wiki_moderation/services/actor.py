# src/wiki_moderation/services/actor.py
"""Identity of whoever performs an action, plus the request it came from."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from wiki_moderation.models import User

RIGHT_MODERATION = "moderation"
RIGHT_SKIP_MODERATION = "skip-moderation"
RIGHT_ROLLBACK = "rollback"


@dataclass(frozen=True)
class Actor:
    """A registered user (id > 0) or an anonymous visitor identified by IP."""

    id: int
    name: str
    rights: frozenset[str] = field(default_factory=frozenset)

    @property
    def logged_in(self) -> bool:
        return self.id > 0

    def is_allowed(self, right: str) -> bool:
        """Return True if this actor holds ``right``."""
        return right in self.rights

    @classmethod
    def from_user(cls, user: User) -> Actor:
        return cls(id=user.id, name=user.name, rights=user.rights_set)

    @classmethod
    def anonymous(cls, ip: str) -> Actor:
        return cls(id=0, name=ip)

    @classmethod
    def load(cls, db: Session, user_id: int, user_text: str) -> Actor:
        """Rebuild the author of a stored change.

        Falls back to the stored name when the account no longer exists.
        """
        user = db.get(User, user_id) if user_id else None
        if user is None:
            return cls(id=user_id, name=user_text)
        return cls.from_user(user)


@dataclass(frozen=True)
class RequestInfo:
    """Origin metadata of the HTTP request behind an action."""

    ip: str | None = None
    xff: str | None = None
    user_agent: str | None = None
    # Anonymous session token, used to recognise repeat edits by the same visitor.
    session_token: str | None = None

# src/wiki_moderation/models/user.py
"""SQLAlchemy model for registered wiki accounts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wiki_moderation.db.session import Base
from wiki_moderation.db.time import utcnow


class User(Base):
    """Registered account together with the rights granted to it."""

    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # Space-separated list of rights, e.g. "moderation skip-moderation".
    rights: Mapped[str] = mapped_column(Text, nullable=False, default="")
    registration: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    @property
    def rights_set(self) -> frozenset[str]:
        """Return the granted rights as a set."""
        return frozenset(self.rights.split())

# src/wiki_moderation/models/moderation.py
"""Models tracking queued changes and the moderation blocklist."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wiki_moderation.db.session import Base
from wiki_moderation.db.time import utcnow

MOD_TYPE_EDIT = "edit"
MOD_TYPE_UPLOAD = "upload"
MOD_TYPE_MOVE = "move"

# Placed into merged_revid while an approval is replaying the change.
APPROVAL_CLAIMED = -1


class ModerationEntry(Base):
    """One queued edit, upload or move awaiting (or having received) review.

    A row is pending while merged_revid == 0 and rejected is false,
    rejected once a moderator (or the blocklist) rejected it, and approved
    once merged_revid holds the revision created by the approval.
    """

    __tablename__ = "moderation"
    __table_args__ = (
        Index("ix_moderation_preload", "preload_id", "namespace", "title", "preloadable"),
        Index("ix_moderation_user_text", "user_text"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=MOD_TYPE_EDIT)

    # Author. user_text survives deletion of the account.
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_text: Mapped[str] = mapped_column(String(255), nullable=False)

    # Affected page; page2_* is the target of a move.
    cur_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    namespace: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    page2_namespace: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    page2_title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    minor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Revision the edit was based on, used to detect conflicts on approval.
    last_oldid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Origin metadata of the author's request.
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    header_xff: Mapped[str | None] = mapped_column(Text, nullable=True)
    header_ua: Mapped[str | None] = mapped_column(Text, nullable=True)

    old_len: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_len: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    stash_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Newline-separated list of change tags.
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "[username" for registered users, "]<hex>" for anonymous sessions.
    preload_id: Mapped[str] = mapped_column(String(255), nullable=False)
    preloadable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejected_by_user: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_by_user_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_batch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejected_auto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    conflict: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    merged_revid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    @property
    def is_pending(self) -> bool:
        return self.merged_revid == 0 and not self.rejected

    @property
    def is_approved(self) -> bool:
        return self.merged_revid > 0


class ModerationBlock(Base):
    """Blocklist entry: changes by this user name or IP are auto-rejected."""

    __tablename__ = "moderation_block"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    blocked_by_user: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blocked_by_user_text: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

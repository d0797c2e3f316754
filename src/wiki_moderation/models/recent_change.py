# src/wiki_moderation/models/recent_change.py
"""Models for the recent changes feed and change tags."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wiki_moderation.db.session import Base
from wiki_moderation.db.time import utcnow

RC_EDIT = 0
RC_NEW = 1
RC_LOG = 3


class RecentChange(Base):
    """Feed row recorded for every edit and every published log entry."""

    __tablename__ = "recentchanges"
    __table_args__ = (Index("ix_recentchanges_title", "namespace", "title"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Left untouched when an approval corrects revision timestamps.
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    type: Mapped[int] = mapped_column(Integer, nullable=False, default=RC_EDIT)
    namespace: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_text: Mapped[str] = mapped_column(String(255), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    minor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    this_oldid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_oldid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    logid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    log_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    log_action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ChangeTag(Base):
    """Label attached to a recent change, revision or log entry."""

    __tablename__ = "change_tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag: Mapped[str] = mapped_column(String(255), nullable=False)
    rc_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    rev_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    log_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

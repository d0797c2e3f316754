# src/wiki_moderation/models/checkuser.py
"""Forensic record of the request behind each recent change."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wiki_moderation.db.session import Base
from wiki_moderation.db.time import utcnow


class CheckUserChange(Base):
    """IP, user agent and X-Forwarded-For captured for one recent change."""

    __tablename__ = "cu_changes"
    __table_args__ = (Index("ix_cu_changes_user_text", "user_text"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rc_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    namespace: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_text: Mapped[str] = mapped_column(String(255), nullable=False)
    this_oldid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_hex: Mapped[str | None] = mapped_column(String(35), nullable=True)
    agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    xff: Mapped[str | None] = mapped_column(Text, nullable=True)
    xff_hex: Mapped[str | None] = mapped_column(String(35), nullable=True)

# src/wiki_moderation/models/log_entry.py
"""Append-only audit log."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wiki_moderation.db.session import Base
from wiki_moderation.db.time import utcnow


class LogEntry(Base):
    """Audit record such as upload/upload, move/move or moderation/approve."""

    __tablename__ = "logging"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    performer_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    performer_text: Mapped[str] = mapped_column(String(255), nullable=False)
    namespace: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    params: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

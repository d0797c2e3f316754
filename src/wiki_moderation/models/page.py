# src/wiki_moderation/models/page.py
"""SQLAlchemy models for wiki pages and their revision history."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from wiki_moderation.db.session import Base
from wiki_moderation.db.time import utcnow

CONTENT_MODEL_WIKITEXT = "wikitext"

# Content models whose native data is plain text and can be staged verbatim.
TEXT_CONTENT_MODELS = frozenset({CONTENT_MODEL_WIKITEXT, "text", "css", "javascript", "json"})


class Page(Base):
    """Current state of one title."""

    __tablename__ = "page"
    __table_args__ = (UniqueConstraint("namespace", "title", name="uq_page_title"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    latest: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_model: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=CONTENT_MODEL_WIKITEXT,
    )
    is_redirect: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Revision(Base):
    """Immutable snapshot of a page.

    History is displayed ordered by timestamp, so corrections to the
    timestamp of a revision must keep it after its parent revision.
    """

    __tablename__ = "revision"
    __table_args__ = (Index("ix_revision_page_id", "page_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    page_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("page.id", ondelete="CASCADE"),
        nullable=False,
    )
    # 0 for the first revision of a page.
    parent_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_text: Mapped[str] = mapped_column(String(255), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    minor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

# src/wiki_moderation/models/__init__.py
"""SQLAlchemy models for the moderation service."""

from .checkuser import CheckUserChange
from .log_entry import LogEntry
from .moderation import ModerationBlock, ModerationEntry
from .page import Page, Revision
from .recent_change import ChangeTag, RecentChange
from .stash import FileStash
from .user import User
from .watchlist import UploadedFile, WatchedPage

__all__ = [
    "CheckUserChange",
    "LogEntry",
    "ModerationBlock", "ModerationEntry",
    "Page", "Revision",
    "ChangeTag", "RecentChange",
    "FileStash",
    "User",
    "UploadedFile", "WatchedPage",
]

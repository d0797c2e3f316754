# src/wiki_moderation/services/__init__.py
"""Business logic services for the moderation queue."""

from .approval import ApprovalEngine, BatchResult
from .approve_hook import ApprovalTask, ApproveHook
from .block_check import BlockList
from .can_skip import SkipPolicy
from .content import ContentEngine
from .entry_store import EntryStore
from .intercept import InterceptionPipeline
from .notify import ModeratorNotifier, get_notifier
from .preload import PreloadSlotIndex

__all__ = [
    "ApprovalEngine",
    "BatchResult",
    "ApprovalTask",
    "ApproveHook",
    "BlockList",
    "SkipPolicy",
    "ContentEngine",
    "EntryStore",
    "InterceptionPipeline",
    "ModeratorNotifier",
    "get_notifier",
    "PreloadSlotIndex",
]

# src/wiki_moderation/services/exceptions.py
"""Exceptions raised by the moderation services."""

from __future__ import annotations


class ModerationError(RuntimeError):
    """Base error for moderation actions that cannot be performed.

    Every subclass carries a stable ``code`` which API clients can match on.
    Raising one of these never leaves partial state behind.
    """

    code = "moderation-error"

    def __init__(self, message: str | None = None, *, entry_id: int | None = None) -> None:
        super().__init__(message or self.code)
        self.entry_id = entry_id


class EntryNotFoundError(ModerationError):
    """No moderation entry exists with the requested id."""

    code = "moderation-edit-not-found"


class AlreadyMergedError(ModerationError):
    """The entry was already approved or merged."""

    code = "moderation-already-merged"


class RejectedTooLongAgoError(ModerationError):
    """The entry was rejected longer ago than the re-approval horizon."""

    code = "moderation-rejected-long-ago"


class AlreadyRejectedError(ModerationError):
    code = "moderation-already-rejected"


class EditConflictError(ModerationError):
    """The page changed since the edit was queued and the change can't be merged automatically."""

    code = "moderation-edit-conflict"


class ApproveFailedError(ModerationError):
    """The content engine refused to perform the approved change."""

    code = "moderation-approve-failed"


class MergeNotNeededError(ModerationError):
    code = "moderation-merge-not-needed"


class PermissionDeniedError(ModerationError):
    code = "moderation-not-allowed"


class ModerationQueued(Exception):  # noqa: N818
    """Signal that a change was diverted into the moderation queue.

    This is not a failure: the change is stored and awaits review. Callers
    should tell the user their change was queued instead of showing an error.
    """

    def __init__(self, entry_id: int, code: str, preload_id: str) -> None:
        super().__init__(code)
        self.entry_id = entry_id
        self.code = code
        self.preload_id = preload_id

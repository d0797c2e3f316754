# src/wiki_moderation/services/entry_store.py
"""Durable storage of moderation entries.

Every state change is a single conditional UPDATE, which is the only guard
against two moderators acting on the same entry at once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from wiki_moderation.db.time import as_utc
from wiki_moderation.models import ModerationEntry
from wiki_moderation.models.moderation import APPROVAL_CLAIMED
from wiki_moderation.services.actor import Actor
from wiki_moderation.services.exceptions import (
    AlreadyMergedError,
    EntryNotFoundError,
    RejectedTooLongAgoError,
)

logger = logging.getLogger(__name__)

FOLDER_PENDING = "pending"
FOLDER_REJECTED = "rejected"
FOLDER_MERGED = "merged"
FOLDER_SPAM = "spam"
FOLDERS = (FOLDER_PENDING, FOLDER_REJECTED, FOLDER_MERGED, FOLDER_SPAM)


class EntryStore:
    """Read and update rows of the ``moderation`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def insert(self, fields: dict[str, Any]) -> int:
        """Insert a new entry and return its id."""
        entry = ModerationEntry(**fields)
        self.db.add(entry)
        self.db.flush()
        return entry.id

    def update_preloaded(self, entry_id: int, fields: dict[str, Any]) -> None:
        """Overwrite a preloadable entry in place with a newer version of the change."""
        self.db.query(ModerationEntry).filter(ModerationEntry.id == entry_id).update(
            fields,
            synchronize_session="fetch",
        )

    def load_by_id(self, entry_id: int) -> ModerationEntry:
        """Return the entry with ``entry_id``.

        Raises:
            EntryNotFoundError: If no such entry exists.
        """
        entry = self.db.get(ModerationEntry, entry_id, populate_existing=True)
        if entry is None:
            raise EntryNotFoundError(entry_id=entry_id)
        return entry

    def mark_rejected(
        self,
        entry_ids: list[int],
        moderator: Actor,
        *,
        batch: bool = False,
        auto: bool = False,
    ) -> int:
        """Reject every still pending entry among ``entry_ids``.

        Already approved or already rejected entries are left alone.

        Returns:
            Number of entries that became rejected.
        """
        if not entry_ids:
            return 0
        affected = (
            self.db.query(ModerationEntry)
            .filter(
                ModerationEntry.id.in_(entry_ids),
                ModerationEntry.merged_revid == 0,
                ModerationEntry.rejected.is_(False),
            )
            .update(
                {
                    "rejected": True,
                    "rejected_by_user": moderator.id,
                    "rejected_by_user_text": moderator.name,
                    "rejected_batch": batch,
                    "rejected_auto": auto,
                    "preloadable": False,
                },
                synchronize_session="fetch",
            )
        )
        logger.debug("Rejected %d of %d entries", affected, len(entry_ids))
        return affected

    def mark_merged(self, entry_id: int, revision_id: int) -> bool:
        """Record the revision that approved or merged this entry.

        Only the first call for an entry has an effect.

        Returns:
            True if this call recorded ``revision_id``, False otherwise.
        """
        affected = (
            self.db.query(ModerationEntry)
            .filter(
                ModerationEntry.id == entry_id,
                ModerationEntry.merged_revid.in_((0, APPROVAL_CLAIMED)),
            )
            .update(
                {"merged_revid": revision_id, "preloadable": False},
                synchronize_session="fetch",
            )
        )
        return affected == 1

    def claim(self, entry_id: int) -> bool:
        """Reserve a pending entry for approval.

        Returns:
            False if the entry was approved or is being approved elsewhere.
        """
        affected = (
            self.db.query(ModerationEntry)
            .filter(ModerationEntry.id == entry_id, ModerationEntry.merged_revid == 0)
            .update({"merged_revid": APPROVAL_CLAIMED}, synchronize_session="fetch")
        )
        return affected == 1

    def release_claim(self, entry_id: int, *, conflict: bool = False) -> None:
        """Undo :meth:`claim` after an approval that did not save anything."""
        values: dict[str, Any] = {"merged_revid": 0}
        if conflict:
            values["conflict"] = True
        self.db.query(ModerationEntry).filter(
            ModerationEntry.id == entry_id,
            ModerationEntry.merged_revid == APPROVAL_CLAIMED,
        ).update(values, synchronize_session="fetch")

    def assert_approvable(self, entry: ModerationEntry, earliest_reapprovable: datetime) -> None:
        """Raise if ``entry`` can no longer be approved.

        Args:
            entry: Entry about to be approved.
            earliest_reapprovable: Rejected entries submitted before this
                moment stay rejected.

        Raises:
            AlreadyMergedError: The entry was already approved or merged.
            RejectedTooLongAgoError: The entry was rejected and is too old.
        """
        if entry.merged_revid != 0:
            raise AlreadyMergedError(entry_id=entry.id)
        if entry.rejected and as_utc(entry.timestamp) < earliest_reapprovable:
            raise RejectedTooLongAgoError(entry_id=entry.id)

    def preloadable_rows(self, preload_id: str, namespace: int, title: str) -> list[ModerationEntry]:
        """Return preloadable entries for this actor and page, newest first."""
        return (
            self.db.query(ModerationEntry)
            .filter(
                ModerationEntry.preload_id == preload_id,
                ModerationEntry.namespace == namespace,
                ModerationEntry.title == title,
                ModerationEntry.preloadable.is_(True),
            )
            .order_by(ModerationEntry.timestamp.desc(), ModerationEntry.id.desc())
            .all()
        )

    def find_preloadable(self, preload_id: str, namespace: int, title: str) -> ModerationEntry | None:
        rows = self.preloadable_rows(preload_id, namespace, title)
        return rows[0] if rows else None

    def pending_ids_by_author(
        self,
        user_text: str,
        namespace: int | None = None,
        title: str | None = None,
    ) -> list[int]:
        """Return ids of pending entries by ``user_text``, oldest first.

        Restrict to one page by passing both ``namespace`` and ``title``.
        """
        query = self.db.query(ModerationEntry.id).filter(
            ModerationEntry.user_text == user_text,
            ModerationEntry.merged_revid == 0,
            ModerationEntry.rejected.is_(False),
        )
        if namespace is not None and title is not None:
            query = query.filter(
                ModerationEntry.namespace == namespace,
                ModerationEntry.title == title,
            )
        return [row.id for row in query.order_by(ModerationEntry.id).all()]

    def list_folder(
        self,
        folder: str = FOLDER_PENDING,
        *,
        limit: int = 50,
        before: int | None = None,
    ) -> list[ModerationEntry]:
        """Return one page of entries from a queue folder, newest first.

        ``spam`` holds entries rejected automatically, ``rejected`` those
        rejected by a moderator.
        """
        query = self.db.query(ModerationEntry)
        if folder == FOLDER_PENDING:
            query = query.filter(
                ModerationEntry.merged_revid == 0,
                ModerationEntry.rejected.is_(False),
            )
        elif folder == FOLDER_REJECTED:
            query = query.filter(
                ModerationEntry.merged_revid == 0,
                ModerationEntry.rejected.is_(True),
                ModerationEntry.rejected_auto.is_(False),
            )
        elif folder == FOLDER_SPAM:
            query = query.filter(
                ModerationEntry.merged_revid == 0,
                ModerationEntry.rejected.is_(True),
                ModerationEntry.rejected_auto.is_(True),
            )
        elif folder == FOLDER_MERGED:
            query = query.filter(ModerationEntry.merged_revid > 0)
        else:
            raise ValueError(f"Unknown folder: {folder}")

        if before is not None:
            query = query.filter(ModerationEntry.id < before)
        return query.order_by(ModerationEntry.id.desc()).limit(limit).all()

    def latest_pending_timestamp(self) -> datetime | None:
        """Return the submission time of the newest pending entry, if any."""
        entry = (
            self.db.query(ModerationEntry)
            .filter(
                ModerationEntry.merged_revid == 0,
                ModerationEntry.rejected.is_(False),
            )
            .order_by(ModerationEntry.timestamp.desc())
            .first()
        )
        return as_utc(entry.timestamp) if entry else None

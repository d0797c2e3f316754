# src/wiki_moderation/services/approval.py
"""Approve, reject and merge queued changes.

Approvals run in waves. A wave replays one or more entries through the
content engine in approve mode, so the interception pipeline lets them
through, and with a fresh :class:`ApproveHook` listening, so the saved
records carry the author's attribution. The wave is one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from wiki_moderation.core.settings import Settings
from wiki_moderation.db.time import as_utc, utcnow
from wiki_moderation.models import FileStash, ModerationEntry
from wiki_moderation.services.actor import RIGHT_MODERATION, Actor, RequestInfo
from wiki_moderation.services.approve_hook import ApprovalTask, ApproveHook
from wiki_moderation.services.block_check import BlockList
from wiki_moderation.services.can_skip import SkipPolicy
from wiki_moderation.services.content import (
    NS_USER,
    ContentEngine,
    ContentError,
    SaveConflictError,
    SaveRequest,
)
from wiki_moderation.services.entry import Replay, change_from_entry
from wiki_moderation.services.entry_store import EntryStore
from wiki_moderation.services.exceptions import (
    AlreadyMergedError,
    AlreadyRejectedError,
    ApproveFailedError,
    EditConflictError,
    MergeNotNeededError,
    ModerationError,
    PermissionDeniedError,
)
from wiki_moderation.services.intercept import InterceptionPipeline
from wiki_moderation.services.notify import ModeratorNotifier

logger = logging.getLogger(__name__)

LOG_TYPE = "moderation"


@dataclass
class BatchResult:
    """Outcome of a batch approval."""

    # Entry id -> id of the revision it became.
    succeeded: dict[int, int] = field(default_factory=dict)
    # Entry id -> error code.
    failed: dict[int, str] = field(default_factory=dict)


@dataclass
class _Wave:
    hook: ApproveHook
    replays: dict[int, tuple[ModerationEntry, Replay]] = field(default_factory=dict)
    errors: dict[int, ModerationError] = field(default_factory=dict)
    touched: bool = False


class ApprovalEngine:
    """Moderator actions on the queue.

    Every public method checks that ``moderator`` holds the ``moderation``
    right and raises :class:`PermissionDeniedError` otherwise.
    """

    def __init__(
        self,
        db: Session,
        content: ContentEngine,
        skip_policy: SkipPolicy,
        interceptor: InterceptionPipeline,
        notifier: ModeratorNotifier,
        config: Settings,
    ) -> None:
        self.db = db
        self.content = content
        self.skip_policy = skip_policy
        self.interceptor = interceptor
        self.notifier = notifier
        self.config = config
        self.store = EntryStore(db)
        self.blocklist = BlockList(db)

    # --- Approval -------------------------------------------------------------------
    def approve(
        self,
        entry_id: int,
        moderator: Actor,
        request: RequestInfo | None = None,
    ) -> int:
        """Approve one entry.

        Args:
            entry_id: Entry to approve.
            moderator: Moderator performing the approval.
            request: Moderator's request, recorded on the moderation log entry.

        Returns:
            Id of the revision created by the approved change.

        Raises:
            EntryNotFoundError: There is no such entry.
            AlreadyMergedError: The entry is approved, or being approved elsewhere.
            RejectedTooLongAgoError: The entry was rejected too long ago.
            EditConflictError: The change conflicts with later edits. The
                entry is flagged so a moderator can merge it by hand.
        """
        self._require_moderator(moderator)
        result, errors = self._approve_ids([entry_id], moderator, request)
        if entry_id in errors:
            raise errors[entry_id]
        return result.succeeded[entry_id]

    def approve_batch(
        self,
        entry_ids: Iterable[int],
        moderator: Actor,
        request: RequestInfo | None = None,
    ) -> BatchResult:
        """Approve several entries in one wave; failures don't stop the others."""
        self._require_moderator(moderator)
        result, _ = self._approve_ids(list(entry_ids), moderator, request)
        return result

    def approve_all(
        self,
        author: str,
        moderator: Actor,
        namespace: int | None = None,
        title: str | None = None,
        request: RequestInfo | None = None,
    ) -> BatchResult:
        """Approve every pending change by ``author``, optionally on one page only."""
        self._require_moderator(moderator)
        ids = self.store.pending_ids_by_author(author, namespace, title)
        result, _ = self._approve_ids(ids, moderator, request, log_each=False)
        if result.succeeded:
            self._log(
                "approveall",
                moderator,
                NS_USER,
                author,
                {"count": len(result.succeeded)},
                request,
            )
            self.db.commit()
        logger.info(
            "%s approved %d of %d pending changes by %s",
            moderator.name,
            len(result.succeeded),
            len(ids),
            author,
        )
        return result

    def _approve_ids(
        self,
        entry_ids: list[int],
        moderator: Actor,
        request: RequestInfo | None,
        *,
        log_each: bool = True,
    ) -> tuple[BatchResult, dict[int, ModerationError]]:
        request = request or RequestInfo()
        with self._wave() as wave:
            for entry_id in entry_ids:
                try:
                    entry = self._claim(entry_id)
                except ModerationError as exc:
                    wave.errors[entry_id] = exc
                    continue

                wave.touched = True
                try:
                    wave.replays[entry_id] = (entry, self._replay(entry, request, wave.hook))
                except ModerationError as exc:
                    wave.errors[entry_id] = exc

        # Revision ids of new uploads are only known once the wave's
        # deferred updates have run.
        result = BatchResult()
        for entry_id, (entry, replay) in wave.replays.items():
            try:
                result.succeeded[entry_id] = self._mark_approved(
                    entry, replay, moderator, request, log=log_each
                )
            except ModerationError as exc:
                wave.errors[entry_id] = exc

        if wave.touched:
            self.db.commit()
            self.notifier.invalidate_pending_time()
        result.failed = {entry_id: exc.code for entry_id, exc in wave.errors.items()}
        return result, wave.errors

    @contextmanager
    def _wave(self) -> Iterator[_Wave]:
        """Run a block of replays as one reconciliation wave.

        Approve mode is left only after the deferred updates, including the
        reconciliation pass, have run.
        """
        wave = _Wave(hook=ApproveHook(self.db, self.content.defer, self.config))
        try:
            with self.skip_policy.approve_mode(), self.content.deferring():
                yield wave
        except Exception:
            self.db.rollback()
            raise

    def _claim(self, entry_id: int) -> ModerationEntry:
        entry = self.store.load_by_id(entry_id)
        self.store.assert_approvable(
            entry, self.config.earliest_reapprovable_timestamp(utcnow())
        )
        if not self.store.claim(entry_id):
            raise AlreadyMergedError(entry_id=entry_id)
        return entry

    def _replay(self, entry: ModerationEntry, request: RequestInfo, hook: ApproveHook) -> Replay:
        change = change_from_entry(entry)
        author = Actor.load(self.db, entry.user_id, entry.user_text)
        hook.add_task(
            entry.namespace,
            entry.title,
            author.name,
            change.kind.value,
            ApprovalTask(
                ip=entry.ip,
                xff=entry.header_xff,
                user_agent=entry.header_ua,
                tags=entry.tags,
                timestamp=as_utc(entry.timestamp),
            ),
        )

        try:
            with self.db.begin_nested():
                return change.replay(self.content, author, request, [self.interceptor, hook])
        except SaveConflictError as exc:
            logger.info("Entry #%d conflicts with later edits: %s", entry.id, exc)
            self.store.release_claim(entry.id, conflict=True)
            raise EditConflictError(entry_id=entry.id) from exc
        except ContentError as exc:
            logger.warning("Failed to replay entry #%d: %s", entry.id, exc)
            self.store.release_claim(entry.id)
            raise ApproveFailedError(str(exc), entry_id=entry.id) from exc

    def _mark_approved(
        self,
        entry: ModerationEntry,
        replay: Replay,
        moderator: Actor,
        request: RequestInfo,
        *,
        log: bool,
    ) -> int:
        if replay.revision_id is None:
            self.store.release_claim(entry.id)
            raise ApproveFailedError("No revision was created", entry_id=entry.id)
        if not self.store.mark_merged(entry.id, replay.revision_id):
            raise AlreadyMergedError(entry_id=entry.id)

        if entry.stash_key:
            self.db.query(FileStash).filter(FileStash.stash_key == entry.stash_key).delete(
                synchronize_session="fetch"
            )
        if log:
            self._log(
                "approve",
                moderator,
                entry.namespace,
                entry.title,
                {"modid": entry.id, "revid": replay.revision_id},
                request,
            )
        logger.info("Entry #%d approved as revision #%d", entry.id, replay.revision_id)
        return replay.revision_id

    # --- Rejection ------------------------------------------------------------------
    def reject(self, entry_id: int, moderator: Actor, request: RequestInfo | None = None) -> None:
        """Reject one pending entry.

        Raises:
            EntryNotFoundError: There is no such entry.
            AlreadyMergedError: The entry was already approved.
            AlreadyRejectedError: The entry was already rejected.
        """
        self._require_moderator(moderator)
        entry = self.store.load_by_id(entry_id)
        if entry.merged_revid != 0:
            raise AlreadyMergedError(entry_id=entry_id)
        if entry.rejected:
            raise AlreadyRejectedError(entry_id=entry_id)
        if not self.store.mark_rejected([entry_id], moderator):
            # Approved or rejected by someone else in the meantime.
            raise AlreadyMergedError(entry_id=entry_id)

        self._log(
            "reject",
            moderator,
            entry.namespace,
            entry.title,
            {"modid": entry.id, "user": entry.user_id, "user_text": entry.user_text},
            request,
        )
        self.db.commit()
        self.notifier.invalidate_pending_time()

    def reject_batch(self, entry_ids: Iterable[int], moderator: Actor) -> int:
        """Reject several entries; returns how many became rejected."""
        self._require_moderator(moderator)
        count = self.store.mark_rejected(list(entry_ids), moderator, batch=True)
        self.db.commit()
        if count:
            self.notifier.invalidate_pending_time()
        return count

    def reject_all(
        self,
        author: str,
        moderator: Actor,
        request: RequestInfo | None = None,
    ) -> int:
        """Reject every pending change by ``author``; returns how many were rejected."""
        self._require_moderator(moderator)
        ids = self.store.pending_ids_by_author(author)
        count = self.store.mark_rejected(ids, moderator, batch=True)
        if count:
            self._log("rejectall", moderator, NS_USER, author, {"count": count}, request)
        self.db.commit()
        if count:
            self.notifier.invalidate_pending_time()
        return count

    # --- Manual merge ---------------------------------------------------------------
    def merge(
        self,
        entry_id: int,
        moderator: Actor,
        merged_text: str,
        request: RequestInfo | None = None,
    ) -> int:
        """Save a hand-merged version of a conflicting entry as the moderator.

        Returns:
            Id of the revision holding the merged text.

        Raises:
            AlreadyMergedError: The entry was already approved or merged.
            MergeNotNeededError: The entry has no edit conflict.
        """
        self._require_moderator(moderator)
        entry = self.store.load_by_id(entry_id)
        if entry.merged_revid != 0:
            raise AlreadyMergedError(entry_id=entry_id)
        if not entry.conflict:
            raise MergeNotNeededError(entry_id=entry_id)

        request = request or RequestInfo()
        try:
            with self.skip_policy.approve_mode():
                result = self.content.save(
                    SaveRequest(
                        actor=moderator,
                        namespace=entry.namespace,
                        title=entry.title,
                        text=merged_text,
                        comment=entry.comment,
                        request=request,
                    ),
                    [self.interceptor],
                )
            if not self.store.mark_merged(entry_id, result.revision_id):
                raise AlreadyMergedError(entry_id=entry_id)
            self._log(
                "merge",
                moderator,
                entry.namespace,
                entry.title,
                {"modid": entry.id, "revid": result.revision_id},
                request,
            )
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()
        self.notifier.invalidate_pending_time()
        return result.revision_id

    # --- Blocklist ------------------------------------------------------------------
    def block(self, address: str, moderator: Actor, request: RequestInfo | None = None) -> bool:
        """Queue future changes by ``address`` as rejected; False if already blocked."""
        self._require_moderator(moderator)
        if not self.blocklist.block(address, moderator):
            return False
        self._log("block", moderator, NS_USER, address, {}, request)
        self.db.commit()
        return True

    def unblock(self, address: str, moderator: Actor, request: RequestInfo | None = None) -> bool:
        """Lift the moderation block of ``address``; False if it wasn't blocked."""
        self._require_moderator(moderator)
        if not self.blocklist.unblock(address):
            return False
        self._log("unblock", moderator, NS_USER, address, {}, request)
        self.db.commit()
        return True

    # --- Helpers --------------------------------------------------------------------
    def _require_moderator(self, moderator: Actor) -> None:
        if not moderator.is_allowed(RIGHT_MODERATION):
            raise PermissionDeniedError(f"{moderator.name} may not moderate")

    def _log(
        self,
        action: str,
        moderator: Actor,
        namespace: int,
        title: str,
        params: dict[str, Any],
        request: RequestInfo | None,
    ) -> None:
        self.content.add_log_entry(
            LOG_TYPE,
            action,
            moderator,
            namespace,
            title,
            params=params,
            request=request,
        )

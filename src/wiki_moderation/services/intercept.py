# src/wiki_moderation/services/intercept.py
"""Divert changes by untrusted users into the moderation queue."""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.orm import Session

from wiki_moderation.db.time import utcnow
from wiki_moderation.models import FileStash
from wiki_moderation.models.moderation import MOD_TYPE_EDIT, MOD_TYPE_MOVE, MOD_TYPE_UPLOAD
from wiki_moderation.models.page import TEXT_CONTENT_MODELS
from wiki_moderation.services.actor import Actor, RequestInfo
from wiki_moderation.services.block_check import BlockList
from wiki_moderation.services.can_skip import SkipPolicy
from wiki_moderation.services.content import (
    ContentEngine,
    EditContext,
    MoveContext,
    UploadContext,
    prefixed_title,
)
from wiki_moderation.services.entry_store import EntryStore
from wiki_moderation.services.exceptions import ModerationQueued
from wiki_moderation.services.hooks import SaveListener
from wiki_moderation.services.notify import ModeratorNotifier
from wiki_moderation.services.preload import PreloadSlotIndex
from wiki_moderation.services.sections import replace_section

logger = logging.getLogger(__name__)

QUEUED_EDIT = "moderation-edit-queued"
QUEUED_UPLOAD = "moderation-image-queued"
QUEUED_MOVE = "moderation-move-queued"

# Shown as the rejecting moderator of changes by blocked users.
BLOCKER_NAME = "Moderation blocker"

# Returns False to let the change through without moderation.
Veto = Callable[[Any], bool]
PendingListener = Callable[[dict[str, Any], int], None]


class InterceptionPipeline(SaveListener):
    """Content engine listener which queues changes instead of saving them.

    Each ``before_*`` callback either returns, letting the change proceed,
    or stores it as a moderation entry and raises :class:`ModerationQueued`.
    """

    def __init__(
        self,
        db: Session,
        content: ContentEngine,
        skip_policy: SkipPolicy,
        notifier: ModeratorNotifier,
        *,
        vetoes: Sequence[Veto] = (),
        pending_listeners: Sequence[PendingListener] = (),
    ) -> None:
        self.db = db
        self.content = content
        self.skip_policy = skip_policy
        self.notifier = notifier
        self.store = EntryStore(db)
        self.preload = PreloadSlotIndex(self.store)
        self.blocklist = BlockList(db)
        self.vetoes = list(vetoes)
        self.pending_listeners = list(pending_listeners)

    def _vetoed(self, ctx: Any) -> bool:
        return any(not veto(ctx) for veto in self.vetoes)

    def before_commit(self, db: Session, ctx: EditContext) -> None:
        request = ctx.request
        if self.skip_policy.can_skip(ctx.actor, ctx.namespace) or self._vetoed(ctx):
            return
        if ctx.content_model not in TEXT_CONTENT_MODELS:
            # Content we can't store as text bypasses moderation.
            logger.info(
                "Not moderating edit of %s with content model %s",
                ctx.title,
                ctx.content_model,
            )
            return

        preload_id = self.preload.get_id(ctx.actor, request.request.session_token, create=True)
        fields = self._base_fields(ctx.actor, request.request, preload_id)
        fields.update(
            {
                "type": MOD_TYPE_EDIT,
                "cur_id": ctx.page.id if ctx.page else 0,
                "namespace": ctx.namespace,
                "title": ctx.title,
                "comment": request.comment,
                "minor": request.minor,
                "bot": request.bot,
                "new": ctx.page is None,
                "last_oldid": ctx.page.latest if ctx.page else 0,
                "old_len": _size(ctx.current_text),
                "new_len": _size(ctx.new_text),
                "text": ctx.new_text,
                "tags": "\n".join(request.tags) or None,
            }
        )

        slot = self.preload.find_slot(preload_id, ctx.namespace, ctx.title)
        if slot is None and ctx.null_edit:
            return
        if slot is not None and request.section:
            # Apply the section to the pending text, not to the live page,
            # so that earlier edits of other sections are kept.
            merged = replace_section(slot.text, request.section, request.text)
            if merged is not None:
                fields["text"] = merged
                fields["new_len"] = _size(merged)
        if slot is not None and slot.stash_key:
            # Editing the description of a pending upload: the entry stays an upload.
            fields["type"] = MOD_TYPE_UPLOAD
            for key in ("cur_id", "new", "last_oldid", "old_len", "new_len"):
                del fields[key]

        entry_id = self._store(fields, slot.id if slot else None)
        self._after_queued(ctx.actor, ctx.namespace, ctx.title, fields, entry_id, request.watch)
        raise ModerationQueued(entry_id, QUEUED_EDIT, preload_id)

    def before_upload(self, db: Session, ctx: UploadContext) -> None:
        request = ctx.request
        if self.skip_policy.can_skip(ctx.actor, ctx.namespace) or self._vetoed(ctx):
            return

        stash = FileStash(
            stash_key=secrets.token_hex(16),
            filename=request.filename,
            data=request.data,
            sha1=hashlib.sha1(request.data).hexdigest(),
            size=len(request.data),
        )
        self.db.add(stash)

        preload_id = self.preload.get_id(ctx.actor, request.request.session_token, create=True)
        fields = self._base_fields(ctx.actor, request.request, preload_id)
        fields.update(
            {
                "type": MOD_TYPE_UPLOAD,
                "cur_id": ctx.page.id if ctx.page else 0,
                "namespace": ctx.namespace,
                "title": ctx.title,
                "comment": request.comment,
                "new": ctx.page is None,
                "last_oldid": ctx.page.latest if ctx.page else 0,
                "old_len": ctx.existing.size if ctx.existing else 0,
                "new_len": len(request.data),
                "text": request.description,
                "stash_key": stash.stash_key,
                "tags": "\n".join(request.tags) or None,
            }
        )

        slot = self.preload.find_slot(preload_id, ctx.namespace, ctx.title)
        entry_id = self._store(fields, slot.id if slot else None)
        self._after_queued(ctx.actor, ctx.namespace, ctx.title, fields, entry_id, request.watch)
        raise ModerationQueued(entry_id, QUEUED_UPLOAD, preload_id)

    def before_move(self, db: Session, ctx: MoveContext) -> None:
        request = ctx.request
        if (
            self.skip_policy.can_skip(ctx.actor, request.namespace, request.new_namespace)
            or self._vetoed(ctx)
        ):
            return

        preload_id = self.preload.get_id(ctx.actor, request.request.session_token, create=True)
        fields = self._base_fields(ctx.actor, request.request, preload_id)
        text_size = _size(self.content.page_text(ctx.page))
        fields.update(
            {
                "type": MOD_TYPE_MOVE,
                "cur_id": ctx.page.id,
                "namespace": request.namespace,
                "title": request.title,
                "page2_namespace": request.new_namespace,
                "page2_title": request.new_title,
                "comment": request.comment,
                "last_oldid": ctx.page.latest,
                "old_len": text_size,
                "new_len": text_size,
                "tags": "\n".join(request.tags) or None,
                # A move is never updated by a later edit of the same page, not even
                # for a blocked user whose other changes stay preloadable.
                "preloadable": False,
            }
        )

        entry_id = self._store(fields, None)
        self._after_queued(ctx.actor, request.namespace, request.title, fields, entry_id, None)
        raise ModerationQueued(entry_id, QUEUED_MOVE, preload_id)

    def _base_fields(self, actor: Actor, info: RequestInfo, preload_id: str) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "timestamp": utcnow(),
            "user_id": actor.id,
            "user_text": actor.name,
            "ip": info.ip,
            "header_xff": info.xff,
            "header_ua": info.user_agent,
            "preload_id": preload_id,
            "preloadable": True,
        }
        if self.blocklist.is_blocked(actor):
            # Still preloadable, so the blocked user doesn't notice anything.
            fields.update(
                {
                    "rejected": True,
                    "rejected_by_user": 0,
                    "rejected_by_user_text": BLOCKER_NAME,
                    "rejected_auto": True,
                }
            )
        return fields

    def _store(self, fields: dict[str, Any], slot_id: int | None) -> int:
        """Insert or update the entry and commit at once.

        The caller treats the queued signal as a failed save and may roll
        back, which must not lose the entry.
        """
        if slot_id is None:
            entry_id = self.store.insert(fields)
        else:
            self.store.update_preloaded(slot_id, fields)
            entry_id = slot_id
        self.db.commit()
        logger.info(
            "Queued %s of %s by %s as entry #%d",
            fields["type"],
            fields["title"],
            fields["user_text"],
            entry_id,
        )
        return entry_id

    def _after_queued(
        self,
        actor: Actor,
        namespace: int,
        title: str,
        fields: dict[str, Any],
        entry_id: int,
        watch: bool | None,
    ) -> None:
        """Best-effort side effects of queueing; failures are only logged."""
        if watch is not None and actor.logged_in:
            try:
                # Watching is the user's own business, no need to wait for approval.
                self.content.set_watch(actor, namespace, title, watch)
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.warning("Failed to update watchlist for %s", actor.name, exc_info=True)

        for listener in self.pending_listeners:
            try:
                listener(fields, entry_id)
            except Exception:
                logger.warning("Pending change listener failed for #%d", entry_id, exc_info=True)

        if fields.get("rejected"):
            return

        try:
            self.notifier.set_pending_time(fields["timestamp"])
            if self.notifier.should_email(bool(fields.get("new"))):
                self.notifier.send_email(prefixed_title(namespace, title), actor.name, entry_id)
        except Exception:
            logger.warning("Failed to notify moderators about #%d", entry_id, exc_info=True)


def _size(text: str) -> int:
    return len(text.encode("utf-8"))

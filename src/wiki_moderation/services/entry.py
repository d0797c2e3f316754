# src/wiki_moderation/services/entry.py
"""Queued changes as typed values, and how each kind is replayed on approval."""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass

from wiki_moderation.models import FileStash, ModerationEntry
from wiki_moderation.models.moderation import MOD_TYPE_EDIT, MOD_TYPE_MOVE, MOD_TYPE_UPLOAD
from wiki_moderation.services.actor import Actor, RequestInfo
from wiki_moderation.services.content import (
    ContentEngine,
    ContentError,
    MoveRequest,
    SaveRequest,
    UploadRequest,
)
from wiki_moderation.services.hooks import SaveListener


class EntryKind(enum.Enum):
    EDIT = MOD_TYPE_EDIT
    UPLOAD = MOD_TYPE_UPLOAD
    MOVE = MOD_TYPE_MOVE


@dataclass
class Replay:
    """Outcome of replaying a change; ``revision_id`` may be filled in later."""

    revision_id: int | None


@dataclass(frozen=True)
class EditChange:
    kind = EntryKind.EDIT

    namespace: int
    title: str
    text: str
    comment: str
    minor: bool
    bot: bool
    base_revision_id: int

    def replay(
        self,
        content: ContentEngine,
        author: Actor,
        request: RequestInfo,
        listeners: Sequence[SaveListener],
    ) -> Replay:
        result = content.save(
            SaveRequest(
                actor=author,
                namespace=self.namespace,
                title=self.title,
                text=self.text,
                comment=self.comment,
                minor=self.minor,
                bot=self.bot,
                base_revision_id=self.base_revision_id,
                request=request,
            ),
            listeners,
        )
        return Replay(result.revision_id)


@dataclass(frozen=True)
class UploadChange:
    kind = EntryKind.UPLOAD

    namespace: int
    title: str
    stash_key: str
    description: str
    comment: str

    def replay(
        self,
        content: ContentEngine,
        author: Actor,
        request: RequestInfo,
        listeners: Sequence[SaveListener],
    ) -> Replay:
        stash = content.db.get(FileStash, self.stash_key)
        if stash is None:
            raise ContentError(f"Stashed file {self.stash_key} is missing")
        result = content.upload(
            UploadRequest(
                actor=author,
                filename=self.title,
                data=stash.data,
                comment=self.comment,
                description=self.description,
                request=request,
            ),
            listeners,
        )
        replay = Replay(result.revision_id)
        if result.revision_id is None:
            # The description page is created by a deferred update.
            def _resolve() -> None:
                replay.revision_id = result.revision_id

            content.defer(_resolve)
        return replay


@dataclass(frozen=True)
class MoveChange:
    kind = EntryKind.MOVE

    namespace: int
    title: str
    new_namespace: int
    new_title: str
    comment: str

    def replay(
        self,
        content: ContentEngine,
        author: Actor,
        request: RequestInfo,
        listeners: Sequence[SaveListener],
    ) -> Replay:
        result = content.move(
            MoveRequest(
                actor=author,
                namespace=self.namespace,
                title=self.title,
                new_namespace=self.new_namespace,
                new_title=self.new_title,
                comment=self.comment,
                request=request,
            ),
            listeners,
        )
        return Replay(result.revision_id)


Change = EditChange | UploadChange | MoveChange


def change_from_entry(entry: ModerationEntry) -> Change:
    """Build the typed change stored in a ``moderation`` row."""
    if entry.type == MOD_TYPE_MOVE:
        return MoveChange(
            namespace=entry.namespace,
            title=entry.title,
            new_namespace=entry.page2_namespace,
            new_title=entry.page2_title,
            comment=entry.comment,
        )
    if entry.stash_key:
        return UploadChange(
            namespace=entry.namespace,
            title=entry.title,
            stash_key=entry.stash_key,
            description=entry.text,
            comment=entry.comment,
        )
    return EditChange(
        namespace=entry.namespace,
        title=entry.title,
        text=entry.text,
        comment=entry.comment,
        minor=entry.minor,
        bot=entry.bot,
        base_revision_id=entry.last_oldid,
    )


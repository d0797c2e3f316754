# src/wiki_moderation/services/hooks.py
"""Listener interface of the content engine.

Listeners are passed explicitly to each content engine call. The engine
invokes them synchronously, in order, at the points below. ``before_*``
callbacks may abort the action by raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from wiki_moderation.models import LogEntry, Page, RecentChange, Revision
    from wiki_moderation.services.actor import Actor
    from wiki_moderation.services.content import EditContext, MoveContext, UploadContext


class SaveListener:
    """No-op base class; override the callbacks you need."""

    def before_commit(self, db: Session, ctx: EditContext) -> None:
        """Called before an edit writes anything."""

    def before_upload(self, db: Session, ctx: UploadContext) -> None:
        """Called before an upload writes anything."""

    def before_move(self, db: Session, ctx: MoveContext) -> None:
        """Called before a move writes anything."""

    def on_new_revision(self, db: Session, page: Page, revision: Revision) -> None:
        """Called after an edit created ``revision``."""

    def on_save_complete(self, db: Session, page: Page, revision: Revision) -> None:
        """Called once an edit and all of its records are written."""

    def on_recent_change_save(self, db: Session, rc: RecentChange) -> None:
        """Called after a recent change row was inserted."""

    def on_checkuser_insert(self, db: Session, rc: RecentChange, fields: dict[str, Any]) -> None:
        """Called before the checkuser row of ``rc`` is inserted; may modify ``fields``."""

    def on_log_entry_insert(self, db: Session, log_entry: LogEntry) -> None:
        """Called after an audit log entry was inserted."""

    def on_file_upload(self, db: Session, page: Page, reupload: bool) -> None:
        """Called once the description page of an upload exists."""

    def on_move_complete(
        self,
        db: Session,
        old: tuple[int, str],
        new: tuple[int, str],
        actor: Actor,
    ) -> None:
        """Called after a page moved from ``old`` to ``new`` (namespace, title)."""

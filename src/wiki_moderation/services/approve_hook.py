# src/wiki_moderation/services/approve_hook.py
"""Attribution reconciliation for approved changes.

Replaying a queued change through the content engine records it as made
now, from the moderator's request. While a batch of approvals runs, this
listener rewrites those records so the change appears as made by its author
at the time it was queued: revision timestamps, the IP of recent changes,
the checkuser IP/user agent/XFF, change tags and the ``revid`` of upload log
entries.

Most corrections are collected during the wave and applied in one pass after
every save of the wave is complete, one UPDATE per (table, column).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from wiki_moderation.core.settings import Settings
from wiki_moderation.db.time import as_utc
from wiki_moderation.models import ChangeTag, LogEntry, Page, RecentChange, Revision
from wiki_moderation.models.moderation import MOD_TYPE_EDIT, MOD_TYPE_MOVE, MOD_TYPE_UPLOAD
from wiki_moderation.services.actor import Actor
from wiki_moderation.services.hooks import SaveListener
from wiki_moderation.services.iputil import checkuser_xff, ip_to_hex, sanitize_ip

logger = logging.getLogger(__name__)

TaskKey = tuple[str, int, str, str]

# Tables whose columns can be corrected, mapped to their ORM model.
_MODELS: dict[str, Any] = {
    "recentchanges": RecentChange,
    "revision": Revision,
}


@dataclass(frozen=True)
class ApprovalTask:
    """Original attribution of a change that is being approved."""

    ip: str | None
    xff: str | None
    user_agent: str | None
    tags: str | None
    timestamp: datetime


class ApproveHook(SaveListener):
    """Collect and apply the corrections of one approval wave.

    Create one instance per wave and pass it as a listener to every content
    engine call made by the wave.
    """

    def __init__(
        self,
        db: Session,
        defer: Callable[[Callable[[], None]], None],
        config: Settings,
    ) -> None:
        self.db = db
        self.defer = defer
        self.config = config
        self.reset()

    def reset(self) -> None:
        """Forget all tasks and queued corrections."""
        self.tasks: dict[TaskKey, ApprovalTask] = {}
        self.updates: dict[tuple[str, str], dict[int, Any]] = {}
        self.log_entries_to_fix: dict[int, LogEntry] = {}
        self.use_count = 0
        self.last_revision_id: int | None = None

    # --- Tasks ----------------------------------------------------------------------
    def add_task(
        self,
        namespace: int,
        title: str,
        user_name: str,
        change_type: str,
        task: ApprovalTask,
    ) -> None:
        """Register the change by ``user_name`` on a page which is about to be replayed."""
        self.tasks[(user_name, namespace, title, change_type)] = task

    def get_task(
        self,
        namespace: int,
        title: str,
        user_name: str,
        change_type: str,
    ) -> ApprovalTask | None:
        return self.tasks.get((user_name, namespace, title, change_type))

    def get_task_by_rc(self, rc: RecentChange) -> ApprovalTask | None:
        """Return the task behind the recent change ``rc``, if any."""
        if rc.log_action in ("move", "move_redir"):
            change_type = MOD_TYPE_MOVE
        elif rc.log_action in ("upload", "overwrite"):
            change_type = MOD_TYPE_UPLOAD
        else:
            change_type = MOD_TYPE_EDIT
        return self.get_task(rc.namespace, rc.title, rc.user_text, change_type)

    # --- Queued corrections ---------------------------------------------------------
    def queue_update(self, table: str, column: str, values: dict[int, Any]) -> None:
        """Set ``column`` of the rows of ``table`` with these ids once the wave is over."""
        if table not in _MODELS:
            raise ValueError(f"Unsupported table: {table}")
        logger.debug("Queued update of %s.%s for ids %s", table, column, sorted(values))
        self.updates.setdefault((table, column), {}).update(values)

    def schedule_do_update(self) -> None:
        """Defer :meth:`do_update` until after the deferred updates of the current save."""
        self.use_count += 1
        self.defer(self.do_update)

    def do_update(self) -> None:
        """Apply queued corrections when the last scheduled call runs.

        Every save schedules a call; all but the last are no-ops, so that
        every recent change of the wave is recorded before the pass.
        """
        self.use_count -= 1
        if self.use_count > 0:
            return
        self._really_do_update()

    def _really_do_update(self) -> None:
        if not self.updates:
            return

        updates, self.updates = self.updates, {}
        for (table, column), values in updates.items():
            model = _MODELS[table]
            if model is Revision and column == "timestamp":
                values = self._preserve_history_order(values)
            if not values:
                continue

            try:
                with self.db.begin_nested():
                    affected = self._apply_column(model, column, values)
            except SQLAlchemyError:
                logger.warning(
                    "Failed to correct %s.%s of ids %s",
                    table,
                    column,
                    sorted(values),
                    exc_info=True,
                )
                continue
            logger.debug("Corrected %s.%s in %d rows", table, column, affected)

    def _apply_column(self, model: Any, column: str, values: dict[int, Any]) -> int:
        """Issue a single UPDATE setting ``column`` per row id."""
        distinct = set(values.values())
        if len(distinct) == 1:
            new_value: Any = distinct.pop()
        else:
            new_value = case(values, value=model.id, else_=getattr(model, column))
        return (
            self.db.query(model)
            .filter(model.id.in_(list(values)))
            .update({column: new_value}, synchronize_session="fetch")
        )

    def _preserve_history_order(self, values: dict[int, datetime]) -> dict[int, datetime]:
        """Drop timestamp corrections that would reorder page history.

        A revision keeps its current timestamp when its parent revision is
        newer than the timestamp it would get.
        """
        parent = aliased(Revision)
        rows = (
            self.db.query(Revision.id, parent.id, parent.timestamp)
            .join(parent, parent.id == Revision.parent_id)
            .filter(Revision.id.in_(list(values)))
            .all()
        )
        previous = {row[0]: (row[1], as_utc(row[2])) for row in rows}

        kept: dict[int, datetime] = {}
        # Oldest first, so that a corrected parent is already decided.
        for revision_id, new_timestamp in sorted(values.items(), key=lambda item: item[1]):
            new_timestamp = as_utc(new_timestamp)
            if revision_id in previous:
                prev_id, prev_timestamp = previous[revision_id]
                prev_timestamp = kept.get(prev_id, prev_timestamp)
                if prev_timestamp > new_timestamp:
                    logger.info(
                        "Not setting timestamp %s of revision #%d: previous revision "
                        "#%d has a newer one (%s)",
                        new_timestamp.isoformat(),
                        revision_id,
                        prev_id,
                        prev_timestamp.isoformat(),
                    )
                    continue
            kept[revision_id] = new_timestamp
        return kept

    # --- Listener callbacks ---------------------------------------------------------
    def on_new_revision(self, db: Session, page: Page, revision: Revision) -> None:
        self.last_revision_id = revision.id

    def on_save_complete(self, db: Session, page: Page, revision: Revision) -> None:
        self.schedule_do_update()

    def on_recent_change_save(self, db: Session, rc: RecentChange) -> None:
        task = self.get_task_by_rc(rc)
        if task is None:
            return

        if self.config.put_ip_in_rc:
            self.queue_update("recentchanges", "ip", {rc.id: sanitize_ip(task.ip)})
        if rc.this_oldid:
            self.queue_update("revision", "timestamp", {rc.this_oldid: task.timestamp})

        if task.tags:
            for tag in task.tags.split("\n"):
                db.add(
                    ChangeTag(
                        tag=tag,
                        rc_id=rc.id,
                        rev_id=rc.this_oldid or None,
                        log_id=rc.logid or None,
                    )
                )
            db.flush()

    def on_checkuser_insert(self, db: Session, rc: RecentChange, fields: dict[str, Any]) -> None:
        task = self.get_task_by_rc(rc)
        if task is None:
            return

        fields["ip"] = sanitize_ip(task.ip)
        fields["ip_hex"] = ip_to_hex(task.ip)
        fields["agent"] = task.user_agent
        fields["xff"], fields["xff_hex"] = checkuser_xff(task.xff, self.config.trusted_proxies)

    def on_move_complete(
        self,
        db: Session,
        old: tuple[int, str],
        new: tuple[int, str],
        actor: Actor,
    ) -> None:
        task = self.get_task(old[0], old[1], actor.name, MOD_TYPE_MOVE)
        if task is None:
            return

        # The redirect left at the old title, if any.
        redirect = (
            db.query(Page).filter(Page.namespace == old[0], Page.title == old[1]).first()
        )
        if redirect is not None and redirect.latest:
            self.queue_update("revision", "timestamp", {redirect.latest: task.timestamp})
        self.schedule_do_update()

    def on_log_entry_insert(self, db: Session, log_entry: LogEntry) -> None:
        params = log_entry.params or {}
        if "revid" in params and params["revid"] is None:
            self.log_entries_to_fix[log_entry.id] = log_entry

    def on_file_upload(self, db: Session, page: Page, reupload: bool) -> None:
        # Reuploads know their revision id when the log entry is written.
        if reupload:
            return

        for log_id, log_entry in list(self.log_entries_to_fix.items()):
            if (log_entry.namespace, log_entry.title) != (page.namespace, page.title):
                continue
            # Assign a new dict so the JSON column is flagged as changed.
            log_entry.params = {**log_entry.params, "revid": page.latest}
            del self.log_entries_to_fix[log_id]
        db.flush()

        revision = db.get(Revision, page.latest)
        if revision is None:
            return
        task = self.get_task(page.namespace, page.title, revision.user_text, MOD_TYPE_UPLOAD)
        if task is not None:
            self.queue_update("revision", "timestamp", {revision.id: task.timestamp})

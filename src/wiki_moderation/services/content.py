# src/wiki_moderation/services/content.py
"""Content engine: pages, revisions, uploads, moves and their records.

Every change writes the same trail: a revision, a recent change row, a
checkuser row and, for uploads and moves, an audit log entry. Listeners
passed to each call observe these writes as they happen.

Some work runs after the action itself, e.g. creating the description page
of a new upload. Such deferred updates run when the outermost
:meth:`ContentEngine.deferring` block exits, or at the end of the call when
no block is active.
"""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from wiki_moderation.core.settings import Settings
from wiki_moderation.models import (
    ChangeTag,
    CheckUserChange,
    LogEntry,
    Page,
    RecentChange,
    Revision,
    UploadedFile,
    WatchedPage,
)
from wiki_moderation.models.page import CONTENT_MODEL_WIKITEXT
from wiki_moderation.models.recent_change import RC_EDIT, RC_LOG, RC_NEW
from wiki_moderation.services.actor import Actor, RequestInfo
from wiki_moderation.services.hooks import SaveListener
from wiki_moderation.services.iputil import checkuser_xff, ip_to_hex, sanitize_ip
from wiki_moderation.services.merge3 import merge3
from wiki_moderation.services.sections import replace_section

logger = logging.getLogger(__name__)

NS_MAIN = 0
NS_USER = 2
NS_FILE = 6

NAMESPACE_NAMES = {
    0: "",
    1: "Talk",
    2: "User",
    3: "User talk",
    4: "Project",
    6: "File",
    10: "Template",
    14: "Category",
}


def prefixed_title(namespace: int, title: str) -> str:
    """Return ``title`` with its namespace prefix, e.g. ``File:Cat.png``."""
    prefix = NAMESPACE_NAMES.get(namespace, str(namespace))
    return f"{prefix}:{title}" if prefix else title


class ContentError(RuntimeError):
    """A content change could not be performed."""


class SaveConflictError(ContentError):
    """The page changed since the edit's base revision and the changes overlap."""


@dataclass
class SaveRequest:
    actor: Actor
    namespace: int
    title: str
    # Full text, or the text of ``section`` when one is given.
    text: str
    comment: str = ""
    minor: bool = False
    bot: bool = False
    section: str | None = None
    base_revision_id: int | None = None
    watch: bool | None = None
    tags: tuple[str, ...] = ()
    content_model: str | None = None
    request: RequestInfo = field(default_factory=RequestInfo)


@dataclass
class EditContext:
    """What an edit is about to write, as seen by ``before_commit`` listeners."""

    request: SaveRequest
    page: Page | None
    current_text: str
    new_text: str
    content_model: str

    @property
    def actor(self) -> Actor:
        return self.request.actor

    @property
    def namespace(self) -> int:
        return self.request.namespace

    @property
    def title(self) -> str:
        return self.request.title

    @property
    def null_edit(self) -> bool:
        return self.page is not None and self.new_text == self.current_text


@dataclass
class SaveResult:
    revision_id: int
    new_page: bool = False
    null_edit: bool = False


@dataclass
class UploadRequest:
    actor: Actor
    filename: str
    data: bytes
    comment: str = ""
    # Text of the description page created for a new file.
    description: str = ""
    watch: bool | None = None
    tags: tuple[str, ...] = ()
    request: RequestInfo = field(default_factory=RequestInfo)


@dataclass
class UploadContext:
    request: UploadRequest
    page: Page | None
    existing: UploadedFile | None

    @property
    def actor(self) -> Actor:
        return self.request.actor

    @property
    def namespace(self) -> int:
        return NS_FILE

    @property
    def title(self) -> str:
        return self.request.filename


@dataclass
class UploadResult:
    log_id: int
    reupload: bool
    # Not known until the description page of a new file has been created.
    revision_id: int | None = None


@dataclass
class MoveRequest:
    actor: Actor
    namespace: int
    title: str
    new_namespace: int
    new_title: str
    comment: str = ""
    leave_redirect: bool = True
    tags: tuple[str, ...] = ()
    request: RequestInfo = field(default_factory=RequestInfo)


@dataclass
class MoveContext:
    request: MoveRequest
    page: Page

    @property
    def actor(self) -> Actor:
        return self.request.actor


@dataclass
class MoveResult:
    revision_id: int
    log_id: int
    redirect_revision_id: int | None = None


class ContentEngine:
    """Store page content and record who changed what, when and from where."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self._deferred: deque[Callable[[], None]] = deque()
        self._defer_depth = 0

    # --- Deferred updates -----------------------------------------------------------
    def defer(self, callback: Callable[[], None]) -> None:
        """Queue ``callback`` to run after the current action."""
        self._deferred.append(callback)

    @contextmanager
    def deferring(self) -> Iterator[None]:
        """Postpone deferred updates until the block exits.

        Updates queued while the deferred updates run are run as well. If
        the block raises, pending updates are dropped.
        """
        self._defer_depth += 1
        try:
            yield
        except BaseException:
            self._defer_depth -= 1
            if not self._defer_depth and self._deferred:
                logger.warning("Dropping %d deferred updates after failure", len(self._deferred))
                self._deferred.clear()
            raise
        self._defer_depth -= 1
        self._finish()

    def run_deferred_updates(self) -> None:
        while self._deferred:
            callback = self._deferred.popleft()
            callback()

    def _finish(self) -> None:
        if not self._defer_depth:
            self.run_deferred_updates()

    # --- Lookups --------------------------------------------------------------------
    def get_page(self, namespace: int, title: str) -> Page | None:
        return (
            self.db.query(Page)
            .filter(Page.namespace == namespace, Page.title == title)
            .first()
        )

    def revision_text(self, revision_id: int | None) -> str:
        if not revision_id:
            return ""
        revision = self.db.get(Revision, revision_id)
        return revision.text if revision else ""

    def page_text(self, page: Page | None) -> str:
        return self.revision_text(page.latest) if page else ""

    def history(self, page: Page) -> list[Revision]:
        """Return revisions of ``page``, newest first."""
        return (
            self.db.query(Revision)
            .filter(Revision.page_id == page.id)
            .order_by(Revision.timestamp.desc(), Revision.id.desc())
            .all()
        )

    def is_watched(self, actor: Actor, namespace: int, title: str) -> bool:
        return (
            self.db.query(WatchedPage)
            .filter(
                WatchedPage.user_id == actor.id,
                WatchedPage.namespace == namespace,
                WatchedPage.title == title,
            )
            .first()
            is not None
        )

    def set_watch(self, actor: Actor, namespace: int, title: str, watch: bool) -> None:
        """Add the page to, or remove it from, the watchlist of a registered actor."""
        if not actor.logged_in or watch == self.is_watched(actor, namespace, title):
            return
        if watch:
            self.db.add(WatchedPage(user_id=actor.id, namespace=namespace, title=title))
        else:
            self.db.query(WatchedPage).filter(
                WatchedPage.user_id == actor.id,
                WatchedPage.namespace == namespace,
                WatchedPage.title == title,
            ).delete(synchronize_session="fetch")
        self.db.flush()

    # --- Edits ----------------------------------------------------------------------
    def save(self, request: SaveRequest, listeners: Sequence[SaveListener] = ()) -> SaveResult:
        """Save a new version of a page.

        Args:
            request: The edit. When ``base_revision_id`` is older than the
                current revision, the edit is merged into the current text.
            listeners: Observers of this save, called in order.

        Returns:
            The created revision, or the current one for an edit that
            changes nothing.

        Raises:
            SaveConflictError: The edit conflicts with newer changes.
            ContentError: The requested section does not exist.
        """
        page = self.get_page(request.namespace, request.title)
        current_text = self.page_text(page)

        new_text = replace_section(current_text, request.section, request.text)
        if new_text is None:
            raise ContentError(f"Section {request.section} not found on {request.title}")

        if (
            page is not None
            and request.base_revision_id is not None
            and request.base_revision_id != page.latest
        ):
            base_text = self.revision_text(request.base_revision_id)
            edited = replace_section(base_text, request.section, request.text)
            merged = merge3(base_text, edited, current_text) if edited is not None else None
            if merged is None:
                raise SaveConflictError(
                    f"Edit of {request.title} based on revision "
                    f"{request.base_revision_id} conflicts with revision {page.latest}"
                )
            new_text = merged

        content_model = (
            page.content_model if page else request.content_model or CONTENT_MODEL_WIKITEXT
        )
        ctx = EditContext(request, page, current_text, new_text, content_model)
        # Listeners also see null edits: reverting to the live text still
        # replaces a queued version of the page.
        for listener in listeners:
            listener.before_commit(self.db, ctx)

        if page is not None and ctx.null_edit:
            return SaveResult(revision_id=page.latest, null_edit=True)

        new_page = page is None
        if page is None:
            page = Page(
                namespace=request.namespace,
                title=request.title,
                content_model=content_model,
            )
            self.db.add(page)
            self.db.flush()

        revision = self._insert_revision(
            page, request.actor, new_text, request.comment, minor=request.minor
        )
        self._fire(listeners, "on_new_revision", page, revision)

        rc = self._insert_recent_change(
            listeners,
            request.request,
            rc_type=RC_NEW if new_page else RC_EDIT,
            namespace=page.namespace,
            title=page.title,
            actor=request.actor,
            comment=request.comment,
            minor=request.minor,
            bot=request.bot,
            this_oldid=revision.id,
            last_oldid=revision.parent_id,
        )
        self._add_tags(request.tags, rc_id=rc.id, rev_id=revision.id)

        if request.watch is not None:
            self.set_watch(request.actor, page.namespace, page.title, request.watch)

        self._fire(listeners, "on_save_complete", page, revision)
        self._finish()
        return SaveResult(revision_id=revision.id, new_page=new_page)

    # --- Uploads --------------------------------------------------------------------
    def upload(self, request: UploadRequest, listeners: Sequence[SaveListener] = ()) -> UploadResult:
        """Store a file and log the upload.

        The description page of a new file is created by a deferred update.
        """
        page = self.get_page(NS_FILE, request.filename)
        existing = self.db.get(UploadedFile, request.filename)
        ctx = UploadContext(request, page, existing)
        for listener in listeners:
            listener.before_upload(self.db, ctx)

        sha1 = hashlib.sha1(request.data).hexdigest()
        reupload = existing is not None
        if existing is None:
            self.db.add(
                UploadedFile(
                    name=request.filename,
                    data=request.data,
                    sha1=sha1,
                    size=len(request.data),
                    user_id=request.actor.id,
                    user_text=request.actor.name,
                )
            )
        else:
            existing.data = request.data
            existing.sha1 = sha1
            existing.size = len(request.data)
            existing.user_id = request.actor.id
            existing.user_text = request.actor.name
        self.db.flush()

        null_revision = None
        if reupload and page is not None:
            null_revision = self._insert_revision(
                page, request.actor, self.page_text(page), request.comment, minor=True
            )
            self._fire(listeners, "on_new_revision", page, null_revision)

        log_entry = self.add_log_entry(
            "upload",
            "overwrite" if reupload else "upload",
            request.actor,
            NS_FILE,
            request.filename,
            comment=request.comment,
            params={"img_sha1": sha1, "revid": null_revision.id if null_revision else None},
            listeners=listeners,
            request=request.request,
            this_oldid=null_revision.id if null_revision else 0,
        )
        self._add_tags(request.tags, log_id=log_entry.id)
        result = UploadResult(
            log_id=log_entry.id,
            reupload=reupload,
            revision_id=null_revision.id if null_revision else None,
        )

        if page is not None and null_revision is not None:
            self._fire(listeners, "on_file_upload", page, True)
            self._fire(listeners, "on_save_complete", page, null_revision)
        else:
            self.defer(lambda: self._create_description_page(request, result, listeners))

        if request.watch is not None:
            self.set_watch(request.actor, NS_FILE, request.filename, request.watch)

        self._finish()
        return result

    def _create_description_page(
        self,
        request: UploadRequest,
        result: UploadResult,
        listeners: Sequence[SaveListener],
    ) -> None:
        page = self.get_page(NS_FILE, request.filename)
        if page is None:
            page = Page(namespace=NS_FILE, title=request.filename)
            self.db.add(page)
            self.db.flush()
        revision = self._insert_revision(page, request.actor, request.description, request.comment)
        result.revision_id = revision.id
        self._fire(listeners, "on_new_revision", page, revision)
        self._fire(listeners, "on_file_upload", page, result.reupload)
        self._fire(listeners, "on_save_complete", page, revision)

    # --- Moves ----------------------------------------------------------------------
    def move(self, request: MoveRequest, listeners: Sequence[SaveListener] = ()) -> MoveResult:
        """Rename a page, optionally leaving a redirect behind.

        Raises:
            ContentError: The page is missing or the target already exists.
        """
        page = self.get_page(request.namespace, request.title)
        if page is None:
            raise ContentError(f"Page {request.title} does not exist")
        if self.get_page(request.new_namespace, request.new_title) is not None:
            raise ContentError(f"Page {request.new_title} already exists")

        ctx = MoveContext(request, page)
        for listener in listeners:
            listener.before_move(self.db, ctx)

        old_name = prefixed_title(request.namespace, request.title)
        new_name = prefixed_title(request.new_namespace, request.new_title)
        comment = f"moved [[{old_name}]] to [[{new_name}]]"
        if request.comment:
            comment += f": {request.comment}"

        text = self.page_text(page)
        page.namespace = request.new_namespace
        page.title = request.new_title
        self.db.flush()

        null_revision = self._insert_revision(page, request.actor, text, comment, minor=True)
        self._fire(listeners, "on_new_revision", page, null_revision)

        redirect_revision_id = None
        if request.leave_redirect:
            redirect = Page(
                namespace=request.namespace,
                title=request.title,
                is_redirect=True,
            )
            self.db.add(redirect)
            self.db.flush()
            redirect_revision = self._insert_revision(
                redirect, request.actor, f"#REDIRECT [[{new_name}]]", comment
            )
            redirect_revision_id = redirect_revision.id

        log_entry = self.add_log_entry(
            "move",
            "move",
            request.actor,
            request.namespace,
            request.title,
            comment=request.comment,
            params={"target": new_name, "noredir": not request.leave_redirect},
            listeners=listeners,
            request=request.request,
            this_oldid=null_revision.id,
        )
        self._add_tags(request.tags, log_id=log_entry.id)

        self._fire(
            listeners,
            "on_move_complete",
            (request.namespace, request.title),
            (request.new_namespace, request.new_title),
            request.actor,
        )
        self._finish()
        return MoveResult(
            revision_id=null_revision.id,
            log_id=log_entry.id,
            redirect_revision_id=redirect_revision_id,
        )

    # --- Audit log ------------------------------------------------------------------
    def add_log_entry(
        self,
        log_type: str,
        action: str,
        actor: Actor,
        namespace: int,
        title: str,
        *,
        comment: str = "",
        params: dict[str, Any] | None = None,
        listeners: Sequence[SaveListener] = (),
        request: RequestInfo | None = None,
        this_oldid: int = 0,
        publish: bool = True,
    ) -> LogEntry:
        """Append an audit log entry and, if ``publish``, a recent change for it."""
        log_entry = LogEntry(
            type=log_type,
            action=action,
            performer_id=actor.id,
            performer_text=actor.name,
            namespace=namespace,
            title=title,
            comment=comment,
            params=dict(params or {}),
        )
        self.db.add(log_entry)
        self.db.flush()
        self._fire(listeners, "on_log_entry_insert", log_entry)

        if publish:
            self._insert_recent_change(
                listeners,
                request or RequestInfo(),
                rc_type=RC_LOG,
                namespace=namespace,
                title=title,
                actor=actor,
                comment=comment,
                this_oldid=this_oldid,
                logid=log_entry.id,
                log_type=log_type,
                log_action=action,
            )
        return log_entry

    # --- Internals ------------------------------------------------------------------
    def _fire(self, listeners: Sequence[SaveListener], event: str, *args: Any) -> None:
        for listener in listeners:
            getattr(listener, event)(self.db, *args)

    def _insert_revision(
        self,
        page: Page,
        actor: Actor,
        text: str,
        comment: str,
        *,
        minor: bool = False,
    ) -> Revision:
        revision = Revision(
            page_id=page.id,
            parent_id=page.latest,
            user_id=actor.id,
            user_text=actor.name,
            comment=comment,
            minor=minor,
            text=text,
            size=len(text.encode("utf-8")),
        )
        self.db.add(revision)
        self.db.flush()
        page.latest = revision.id
        self.db.flush()
        return revision

    def _insert_recent_change(
        self,
        listeners: Sequence[SaveListener],
        info: RequestInfo,
        *,
        rc_type: int,
        namespace: int,
        title: str,
        actor: Actor,
        comment: str = "",
        minor: bool = False,
        bot: bool = False,
        this_oldid: int = 0,
        last_oldid: int = 0,
        logid: int = 0,
        log_type: str | None = None,
        log_action: str | None = None,
    ) -> RecentChange:
        rc = RecentChange(
            type=rc_type,
            namespace=namespace,
            title=title,
            user_id=actor.id,
            user_text=actor.name,
            comment=comment,
            minor=minor,
            bot=bot,
            this_oldid=this_oldid,
            last_oldid=last_oldid,
            logid=logid,
            log_type=log_type,
            log_action=log_action,
            ip=sanitize_ip(info.ip) if self.config.put_ip_in_rc else None,
        )
        self.db.add(rc)
        self.db.flush()
        self._fire(listeners, "on_recent_change_save", rc)

        xff, xff_hex = checkuser_xff(info.xff, self.config.trusted_proxies)
        fields: dict[str, Any] = {
            "rc_id": rc.id,
            "timestamp": rc.timestamp,
            "namespace": namespace,
            "title": title,
            "user_id": actor.id,
            "user_text": actor.name,
            "this_oldid": this_oldid,
            "ip": sanitize_ip(info.ip),
            "ip_hex": ip_to_hex(info.ip),
            "agent": info.user_agent,
            "xff": xff,
            "xff_hex": xff_hex,
        }
        self._fire(listeners, "on_checkuser_insert", rc, fields)
        self.db.add(CheckUserChange(**fields))
        self.db.flush()
        return rc

    def _add_tags(
        self,
        tags: Sequence[str],
        *,
        rc_id: int | None = None,
        rev_id: int | None = None,
        log_id: int | None = None,
    ) -> None:
        for tag in tags:
            self.db.add(ChangeTag(tag=tag, rc_id=rc_id, rev_id=rev_id, log_id=log_id))
        if tags:
            self.db.flush()


"""Tests for diverting changes into the moderation queue."""

from __future__ import annotations

import logging
from typing import Any

import pytest
from sqlalchemy.orm import Session

from tests.conftest import EDITOR_REQUEST, Wiki
from wiki_moderation.models import FileStash, ModerationEntry, Page, UploadedFile
from wiki_moderation.services import InterceptionPipeline
from wiki_moderation.services.actor import Actor, RequestInfo
from wiki_moderation.services.content import MoveRequest, SaveRequest, UploadRequest
from wiki_moderation.services.entry import EntryKind, change_from_entry
from wiki_moderation.services.exceptions import ModerationQueued
from wiki_moderation.services.intercept import (
    BLOCKER_NAME,
    QUEUED_EDIT,
    QUEUED_MOVE,
    QUEUED_UPLOAD,
)


def _entry(db: Session, entry_id: int) -> ModerationEntry:
    entry = db.get(ModerationEntry, entry_id, populate_existing=True)
    assert entry is not None
    return entry


def test_moderated_edit_is_queued(wiki: Wiki, editor: Actor, db_session: Session) -> None:
    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.save(
            SaveRequest(
                actor=editor,
                namespace=0,
                title="Sandbox",
                text="Hello",
                comment="first",
                tags=("mobile edit", "visual"),
                request=EDITOR_REQUEST,
            ),
            [wiki.interceptor],
        )
    queued = excinfo.value
    assert queued.code == QUEUED_EDIT
    assert queued.preload_id == "[Editor"

    assert wiki.content.get_page(0, "Sandbox") is None
    entry = _entry(db_session, queued.entry_id)
    assert entry.type == "edit"
    assert entry.user_id == editor.id
    assert entry.user_text == "Editor"
    assert entry.text == "Hello"
    assert entry.comment == "first"
    assert entry.new is True
    assert entry.last_oldid == 0
    assert (entry.old_len, entry.new_len) == (0, 5)
    assert entry.ip == "192.0.2.10"
    assert entry.header_xff == "198.51.100.7, 192.0.2.1"
    assert entry.header_ua == "EditorBrowser/1.0"
    assert entry.tags == "mobile edit\nvisual"
    assert entry.preloadable is True
    assert entry.is_pending


def test_trusted_edit_is_saved(wiki: Wiki, trusted: Actor) -> None:
    revision_id = wiki.edit(trusted, "Sandbox", "Hello")
    page = wiki.content.get_page(0, "Sandbox")
    assert page is not None
    assert page.latest == revision_id
    assert wiki.db.query(ModerationEntry).count() == 0


def test_edit_of_existing_page_records_base_revision(
    wiki: Wiki,
    trusted: Actor,
    editor: Actor,
    db_session: Session,
) -> None:
    base = wiki.edit(trusted, "Sandbox", "Hello")
    entry = _entry(db_session, wiki.edit(editor, "Sandbox", "Hello, world"))
    assert entry.new is False
    assert entry.last_oldid == base
    assert entry.cur_id == wiki.content.get_page(0, "Sandbox").id
    assert (entry.old_len, entry.new_len) == (5, 12)
    assert wiki.content.page_text(wiki.content.get_page(0, "Sandbox")) == "Hello"


def test_repeat_edit_updates_pending_entry(wiki: Wiki, editor: Actor, db_session: Session) -> None:
    first = wiki.edit(editor, "Sandbox", "Draft one", comment="one")
    second = wiki.edit(editor, "Sandbox", "Draft two", comment="two")

    assert first == second
    assert db_session.query(ModerationEntry).count() == 1
    entry = _entry(db_session, first)
    assert entry.text == "Draft two"
    assert entry.comment == "two"


def test_edits_by_different_users_are_separate(
    wiki: Wiki,
    editor: Actor,
    other_editor: Actor,
) -> None:
    assert wiki.edit(editor, "Sandbox", "Mine") != wiki.edit(other_editor, "Sandbox", "Theirs")


def test_section_edit_applies_to_pending_text(
    wiki: Wiki,
    trusted: Actor,
    editor: Actor,
    db_session: Session,
) -> None:
    wiki.edit(trusted, "Sandbox", "Intro\n== A ==\na\n== B ==\nb\n")

    first = wiki.edit(editor, "Sandbox", "== A ==\nA changed", section="1")
    assert _entry(db_session, first).text == "Intro\n== A ==\nA changed\n== B ==\nb\n"

    second = wiki.edit(editor, "Sandbox", "== B ==\nB changed", section="2")
    assert second == first
    assert _entry(db_session, first).text == "Intro\n== A ==\nA changed\n== B ==\nB changed\n"


def test_anonymous_edits_coalesce_by_session_token(wiki: Wiki, db_session: Session) -> None:
    anon = Actor.anonymous("192.0.2.50")
    request = RequestInfo(ip="192.0.2.50")

    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.save(
            SaveRequest(actor=anon, namespace=0, title="Sandbox", text="one", request=request),
            [wiki.interceptor],
        )
    preload_id = excinfo.value.preload_id
    assert preload_id.startswith("]")
    token = preload_id[1:]

    same_session = RequestInfo(ip="192.0.2.50", session_token=token)
    again = wiki.edit(anon, "Sandbox", "two", request=same_session)
    assert again == excinfo.value.entry_id
    assert _entry(db_session, again).text == "two"

    # Without the token the visitor can't be recognised.
    assert wiki.edit(anon, "Sandbox", "three", request=request) != again


def test_blocked_user_edit_is_rejected_silently(
    wiki: Wiki,
    editor: Actor,
    moderator: Actor,
    notifier: Any,
    db_session: Session,
) -> None:
    assert wiki.approval.block("Editor", moderator) is True

    entry = _entry(db_session, wiki.edit(editor, "Sandbox", "Spam"))
    assert entry.rejected is True
    assert entry.rejected_auto is True
    assert entry.rejected_by_user == 0
    assert entry.rejected_by_user_text == BLOCKER_NAME
    # Still preloadable, so the author keeps seeing the change.
    assert entry.preloadable is True
    assert notifier.get_pending_time(db_session) is None


def test_ignored_namespace_is_saved_directly(wiki: Wiki, editor: Actor) -> None:
    wiki.config.moderation_ignored_in_namespaces = [4]
    wiki.edit(editor, "Sandbox", "Free for all", namespace=4)
    assert wiki.content.get_page(4, "Sandbox") is not None


def test_veto_lets_change_through(wiki: Wiki, editor: Actor) -> None:
    seen: list[Any] = []

    def allow(ctx: Any) -> bool:
        seen.append(ctx)
        return False

    interceptor = InterceptionPipeline(
        wiki.db,
        wiki.content,
        wiki.skip_policy,
        wiki.interceptor.notifier,
        vetoes=[allow],
    )
    result = wiki.content.save(
        SaveRequest(actor=editor, namespace=0, title="Sandbox", text="Hi"),
        [interceptor],
    )
    assert result.new_page is True
    assert len(seen) == 1
    assert seen[0].title == "Sandbox"


def test_non_text_content_model_bypasses_moderation(wiki: Wiki, editor: Actor) -> None:
    revision_id = wiki.edit(editor, "Board", "{}", content_model="flow-board")
    page = wiki.content.get_page(0, "Board")
    assert page is not None
    assert page.latest == revision_id
    assert page.content_model == "flow-board"


def test_queueing_watches_page_at_once(wiki: Wiki, editor: Actor) -> None:
    wiki.edit(editor, "Sandbox", "Hello", watch=True)
    assert wiki.content.is_watched(editor, 0, "Sandbox") is True


def test_pending_listeners_are_called(wiki: Wiki, editor: Actor, caplog: Any) -> None:
    calls: list[tuple[dict[str, Any], int]] = []

    def broken(fields: dict[str, Any], entry_id: int) -> None:
        raise RuntimeError("listener failure")

    def record(fields: dict[str, Any], entry_id: int) -> None:
        calls.append((fields, entry_id))

    wiki.interceptor.pending_listeners = [broken, record]
    with caplog.at_level(logging.WARNING, logger="wiki_moderation.services.intercept"):
        entry_id = wiki.edit(editor, "Sandbox", "Hello")

    assert len(calls) == 1
    fields, called_id = calls[0]
    assert called_id == entry_id
    assert fields["title"] == "Sandbox"
    assert "Pending change listener failed" in caplog.text


def test_queueing_sets_pending_time(
    wiki: Wiki,
    editor: Actor,
    notifier: Any,
    db_session: Session,
) -> None:
    entry = _entry(db_session, wiki.edit(editor, "Sandbox", "Hello"))
    pending = notifier.get_pending_time(db_session)
    assert pending is not None
    assert pending.replace(tzinfo=None) == entry.timestamp.replace(tzinfo=None)


def test_moderated_move_is_queued(
    wiki: Wiki,
    trusted: Actor,
    editor: Actor,
    db_session: Session,
) -> None:
    wiki.edit(trusted, "Old", "Some text")

    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.move(
            MoveRequest(
                actor=editor,
                namespace=0,
                title="Old",
                new_namespace=0,
                new_title="New",
                comment="better name",
                request=EDITOR_REQUEST,
            ),
            [wiki.interceptor],
        )
    assert excinfo.value.code == QUEUED_MOVE

    entry = _entry(db_session, excinfo.value.entry_id)
    assert entry.type == "move"
    assert (entry.namespace, entry.title) == (0, "Old")
    assert (entry.page2_namespace, entry.page2_title) == (0, "New")
    assert entry.preloadable is False
    assert wiki.content.get_page(0, "Old") is not None
    assert wiki.content.get_page(0, "New") is None


def test_moderated_upload_is_stashed(wiki: Wiki, editor: Actor, db_session: Session) -> None:
    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.upload(
            UploadRequest(
                actor=editor,
                filename="Cat.png",
                data=b"\x89PNG fake",
                comment="a cat",
                description="A photo of a cat",
                request=EDITOR_REQUEST,
            ),
            [wiki.interceptor],
        )
    assert excinfo.value.code == QUEUED_UPLOAD

    entry = _entry(db_session, excinfo.value.entry_id)
    assert entry.type == "upload"
    assert (entry.namespace, entry.title) == (6, "Cat.png")
    assert entry.text == "A photo of a cat"
    assert entry.new_len == 9

    stash = db_session.get(FileStash, entry.stash_key)
    assert stash is not None
    assert stash.data == b"\x89PNG fake"
    assert stash.filename == "Cat.png"
    assert db_session.get(UploadedFile, "Cat.png") is None
    assert db_session.query(Page).filter(Page.namespace == 6).count() == 0


def test_anonymous_section_edits_apply_to_pending_text(
    wiki: Wiki,
    trusted: Actor,
    db_session: Session,
) -> None:
    wiki.edit(trusted, "Sandbox", "Intro\n== A ==\na\n== B ==\nb\n")
    anon = Actor.anonymous("192.0.2.50")

    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.save(
            SaveRequest(
                actor=anon,
                namespace=0,
                title="Sandbox",
                text="== A ==\nA changed",
                section="1",
                request=RequestInfo(ip="192.0.2.50"),
            ),
            [wiki.interceptor],
        )
    token = excinfo.value.preload_id[1:]

    same_session = RequestInfo(ip="192.0.2.50", session_token=token)
    second = wiki.edit(anon, "Sandbox", "== B ==\nB changed", section="2", request=same_session)
    assert second == excinfo.value.entry_id
    assert _entry(db_session, second).text == "Intro\n== A ==\nA changed\n== B ==\nB changed\n"


def test_reverting_to_live_text_updates_pending_entry(
    wiki: Wiki,
    trusted: Actor,
    editor: Actor,
    db_session: Session,
) -> None:
    wiki.edit(trusted, "Sandbox", "A")
    entry_id = wiki.edit(editor, "Sandbox", "B")

    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.save(
            SaveRequest(
                actor=editor,
                namespace=0,
                title="Sandbox",
                text="A",
                request=EDITOR_REQUEST,
            ),
            [wiki.interceptor],
        )
    assert excinfo.value.entry_id == entry_id
    assert _entry(db_session, entry_id).text == "A"


def test_null_edit_without_pending_entry_is_not_queued(
    wiki: Wiki,
    trusted: Actor,
    editor: Actor,
    db_session: Session,
) -> None:
    revision_id = wiki.edit(trusted, "Sandbox", "A")

    assert wiki.edit(editor, "Sandbox", "A") == revision_id
    assert db_session.query(ModerationEntry).count() == 0


def test_description_edit_keeps_pending_upload(
    wiki: Wiki,
    editor: Actor,
    db_session: Session,
) -> None:
    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.upload(
            UploadRequest(
                actor=editor,
                filename="Cat.png",
                data=b"\x89PNG fake",
                description="A photo of a cat",
                request=EDITOR_REQUEST,
            ),
            [wiki.interceptor],
        )
    upload = _entry(db_session, excinfo.value.entry_id)
    stash_key = upload.stash_key

    entry_id = wiki.edit(editor, "Cat.png", "A photo of a black cat", namespace=6)
    assert entry_id == upload.id

    entry = _entry(db_session, entry_id)
    assert entry.type == "upload"
    assert entry.stash_key == stash_key
    assert entry.text == "A photo of a black cat"
    assert entry.new_len == 9
    assert change_from_entry(entry).kind is EntryKind.UPLOAD


def test_blocked_user_move_is_rejected_but_not_preloadable(
    wiki: Wiki,
    trusted: Actor,
    editor: Actor,
    moderator: Actor,
    db_session: Session,
) -> None:
    wiki.edit(trusted, "Old", "Some text")
    wiki.approval.block("Editor", moderator)

    with pytest.raises(ModerationQueued) as excinfo:
        wiki.content.move(
            MoveRequest(
                actor=editor,
                namespace=0,
                title="Old",
                new_namespace=0,
                new_title="New",
                request=EDITOR_REQUEST,
            ),
            [wiki.interceptor],
        )

    entry = _entry(db_session, excinfo.value.entry_id)
    assert entry.rejected_auto is True
    assert entry.preloadable is False
    # A later edit of the page gets an entry of its own.
    assert wiki.edit(editor, "Old", "Other text") != entry.id

"""Tests for the attribution reconciliation listener."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy.orm import Session

from wiki_moderation.core.settings import Settings
from wiki_moderation.db.time import as_utc, utcnow
from wiki_moderation.models import LogEntry, Page, RecentChange, Revision
from wiki_moderation.services import ApprovalTask, ApproveHook

TASK_TIME = utcnow() - timedelta(days=2)
TASK = ApprovalTask(
    ip="192.0.2.10",
    xff="198.51.100.7",
    user_agent="EditorBrowser/1.0",
    tags="visual",
    timestamp=TASK_TIME,
)


@pytest.fixture()
def deferred() -> list[Callable[[], None]]:
    return []


@pytest.fixture()
def hook(db_session: Session, deferred: list[Callable[[], None]], config: Settings) -> ApproveHook:
    return ApproveHook(db_session, deferred.append, config)


def _run(deferred: list[Callable[[], None]]) -> None:
    while deferred:
        deferred.pop(0)()


def _revision(db: Session, page: Page, *, parent_id: int = 0, age: timedelta) -> Revision:
    revision = Revision(
        page_id=page.id,
        parent_id=parent_id,
        user_text="Editor",
        text="x",
        timestamp=utcnow() - age,
    )
    db.add(revision)
    db.flush()
    page.latest = revision.id
    db.flush()
    return revision


@pytest.fixture()
def page(db_session: Session) -> Page:
    page = Page(namespace=0, title="Sandbox")
    db_session.add(page)
    db_session.flush()
    return page


def _rc(db: Session, **fields: Any) -> RecentChange:
    values: dict[str, Any] = {"namespace": 0, "title": "Sandbox", "user_text": "Editor"}
    values.update(fields)
    rc = RecentChange(**values)
    db.add(rc)
    db.flush()
    return rc


def test_tasks_are_keyed_by_author_page_and_type(hook: ApproveHook) -> None:
    hook.add_task(0, "Sandbox", "Editor", "edit", TASK)
    assert hook.get_task(0, "Sandbox", "Editor", "edit") is TASK
    assert hook.get_task(0, "Sandbox", "Editor", "move") is None
    assert hook.get_task(0, "Sandbox", "Someone", "edit") is None


def test_task_of_recent_change_depends_on_log_action(hook: ApproveHook, db_session: Session) -> None:
    move_task = ApprovalTask(None, None, None, None, TASK_TIME)
    hook.add_task(0, "Sandbox", "Editor", "edit", TASK)
    hook.add_task(0, "Sandbox", "Editor", "move", move_task)

    assert hook.get_task_by_rc(_rc(db_session)) is TASK
    assert hook.get_task_by_rc(_rc(db_session, log_action="move")) is move_task
    assert hook.get_task_by_rc(_rc(db_session, log_action="upload")) is None


def test_unknown_table_is_refused(hook: ApproveHook) -> None:
    with pytest.raises(ValueError):
        hook.queue_update("user", "name", {1: "x"})


def test_updates_wait_for_last_scheduled_call(
    hook: ApproveHook,
    deferred: list[Callable[[], None]],
    db_session: Session,
) -> None:
    rc = _rc(db_session, ip="203.0.113.5")
    hook.queue_update("recentchanges", "ip", {rc.id: "192.0.2.10"})
    hook.schedule_do_update()
    hook.schedule_do_update()
    assert hook.use_count == 2

    deferred.pop(0)()
    db_session.expire_all()
    assert db_session.get(RecentChange, rc.id).ip == "203.0.113.5"

    deferred.pop(0)()
    db_session.expire_all()
    assert db_session.get(RecentChange, rc.id).ip == "192.0.2.10"
    assert hook.updates == {}


def test_different_values_are_set_per_row(
    hook: ApproveHook,
    deferred: list[Callable[[], None]],
    db_session: Session,
) -> None:
    first = _rc(db_session, ip="203.0.113.5")
    second = _rc(db_session, ip="203.0.113.5")
    untouched = _rc(db_session, ip="203.0.113.5")

    hook.queue_update("recentchanges", "ip", {first.id: "192.0.2.1"})
    hook.queue_update("recentchanges", "ip", {second.id: "192.0.2.2"})
    hook.schedule_do_update()
    _run(deferred)

    db_session.expire_all()
    assert db_session.get(RecentChange, first.id).ip == "192.0.2.1"
    assert db_session.get(RecentChange, second.id).ip == "192.0.2.2"
    assert db_session.get(RecentChange, untouched.id).ip == "203.0.113.5"


def test_timestamp_older_than_parent_is_not_applied(
    hook: ApproveHook,
    deferred: list[Callable[[], None]],
    db_session: Session,
    page: Page,
) -> None:
    parent = _revision(db_session, page, age=timedelta(hours=1))
    child = _revision(db_session, page, parent_id=parent.id, age=timedelta(0))
    original = as_utc(child.timestamp)

    hook.queue_update("revision", "timestamp", {child.id: utcnow() - timedelta(days=1)})
    hook.schedule_do_update()
    _run(deferred)

    db_session.expire_all()
    assert as_utc(db_session.get(Revision, child.id).timestamp) == original


def test_corrected_parent_allows_older_child(
    hook: ApproveHook,
    deferred: list[Callable[[], None]],
    db_session: Session,
    page: Page,
) -> None:
    parent = _revision(db_session, page, age=timedelta(minutes=2))
    child = _revision(db_session, page, parent_id=parent.id, age=timedelta(minutes=1))
    parent_time = utcnow() - timedelta(days=2)
    child_time = utcnow() - timedelta(days=1)

    hook.queue_update("revision", "timestamp", {parent.id: parent_time, child.id: child_time})
    hook.schedule_do_update()
    _run(deferred)

    db_session.expire_all()
    assert as_utc(db_session.get(Revision, parent.id).timestamp) == parent_time
    assert as_utc(db_session.get(Revision, child.id).timestamp) == child_time


def test_failed_column_does_not_stop_others(
    hook: ApproveHook,
    deferred: list[Callable[[], None]],
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    rc = _rc(db_session, ip="203.0.113.5")
    hook.queue_update("recentchanges", "no_such_column", {rc.id: "x"})
    hook.queue_update("recentchanges", "ip", {rc.id: "192.0.2.10"})
    hook.schedule_do_update()

    with caplog.at_level(logging.WARNING, logger="wiki_moderation.services.approve_hook"):
        _run(deferred)

    db_session.expire_all()
    assert db_session.get(RecentChange, rc.id).ip == "192.0.2.10"
    assert "Failed to correct recentchanges.no_such_column" in caplog.text


def test_recent_change_gets_author_ip_timestamp_and_tags(
    hook: ApproveHook,
    deferred: list[Callable[[], None]],
    db_session: Session,
    page: Page,
) -> None:
    revision = _revision(db_session, page, age=timedelta(0))
    hook.add_task(0, "Sandbox", "Editor", "edit", TASK)
    rc = _rc(db_session, ip="203.0.113.5", this_oldid=revision.id)

    hook.on_recent_change_save(db_session, rc)
    assert hook.updates[("recentchanges", "ip")] == {rc.id: "192.0.2.10"}
    assert hook.updates[("revision", "timestamp")] == {revision.id: TASK_TIME}

    hook.schedule_do_update()
    _run(deferred)
    db_session.expire_all()
    assert as_utc(db_session.get(Revision, revision.id).timestamp) == TASK_TIME


def test_rc_ip_is_left_alone_when_not_recorded(
    hook: ApproveHook,
    config: Settings,
    db_session: Session,
) -> None:
    config.put_ip_in_rc = False
    hook.add_task(0, "Sandbox", "Editor", "edit", TASK)
    hook.on_recent_change_save(db_session, _rc(db_session))
    assert ("recentchanges", "ip") not in hook.updates


def test_checkuser_fields_are_replaced(hook: ApproveHook, db_session: Session) -> None:
    hook.add_task(0, "Sandbox", "Editor", "edit", TASK)
    fields: dict[str, Any] = {"ip": "203.0.113.5", "agent": "ModeratorBrowser/2.0"}
    hook.on_checkuser_insert(db_session, _rc(db_session), fields)
    assert fields["ip"] == "192.0.2.10"
    assert fields["ip_hex"] == "C000020A"
    assert fields["agent"] == "EditorBrowser/1.0"
    assert fields["xff"] == "198.51.100.7"
    assert fields["xff_hex"] == "C6336407"


def test_changes_without_task_are_ignored(hook: ApproveHook, db_session: Session) -> None:
    fields: dict[str, Any] = {"ip": "203.0.113.5"}
    hook.on_checkuser_insert(db_session, _rc(db_session), fields)
    hook.on_recent_change_save(db_session, _rc(db_session))
    assert fields == {"ip": "203.0.113.5"}
    assert hook.updates == {}


def test_upload_log_entry_gets_description_revision(
    hook: ApproveHook,
    db_session: Session,
) -> None:
    log_entry = LogEntry(
        type="upload",
        action="upload",
        performer_text="Editor",
        namespace=6,
        title="Cat.png",
        params={"img_sha1": "abc", "revid": None},
    )
    db_session.add(log_entry)
    db_session.flush()
    hook.on_log_entry_insert(db_session, log_entry)
    assert log_entry.id in hook.log_entries_to_fix

    file_page = Page(namespace=6, title="Cat.png")
    db_session.add(file_page)
    db_session.flush()
    revision = _revision(db_session, file_page, age=timedelta(0))
    hook.add_task(6, "Cat.png", "Editor", "upload", TASK)

    hook.on_file_upload(db_session, file_page, False)

    db_session.expire_all()
    stored = db_session.get(LogEntry, log_entry.id)
    assert stored.params == {"img_sha1": "abc", "revid": revision.id}
    assert hook.log_entries_to_fix == {}
    assert hook.updates[("revision", "timestamp")] == {revision.id: TASK_TIME}


def test_reset_forgets_everything(hook: ApproveHook) -> None:
    hook.add_task(0, "Sandbox", "Editor", "edit", TASK)
    hook.queue_update("revision", "timestamp", {1: TASK_TIME})
    hook.schedule_do_update()
    hook.reset()
    assert hook.tasks == {}
    assert hook.updates == {}
    assert hook.use_count == 0

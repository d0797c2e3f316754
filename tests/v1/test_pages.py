"""Tests for the editor-facing page endpoints."""

from __future__ import annotations

import base64

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tests.conftest import auth_headers
from wiki_moderation.api.v1.dependencies import SESSION_COOKIE
from wiki_moderation.models import ModerationEntry
from wiki_moderation.services.actor import Actor


def test_trusted_edit_is_saved(client: TestClient, trusted: Actor) -> None:
    response = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "Hello", "comment": "start"},
        headers=auth_headers("Trusted"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "saved"
    assert body["new_page"] is True

    page = client.get("/api/v1/pages/0/Sandbox")
    assert page.status_code == 200
    assert page.json()["text"] == "Hello"
    assert page.json()["latest"] == body["revision_id"]


def test_moderated_edit_is_queued(
    client: TestClient,
    editor: Actor,
    db_session: Session,
) -> None:
    response = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "Hello"},
        headers={**auth_headers("Editor"), "User-Agent": "EditorBrowser/1.0"},
    )
    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued"
    assert body["code"] == "moderation-edit-queued"
    # Registered users are recognised by name, no session cookie needed.
    assert SESSION_COOKIE not in response.cookies

    entry = db_session.get(ModerationEntry, body["entry_id"])
    assert entry is not None
    assert entry.user_text == "Editor"
    assert entry.header_ua == "EditorBrowser/1.0"
    assert client.get("/api/v1/pages/0/Sandbox").status_code == 404


def test_anonymous_edits_share_entry_through_cookie(
    client: TestClient,
    db_session: Session,
) -> None:
    first = client.post("/api/v1/pages/edit", json={"title": "Sandbox", "text": "one"})
    assert first.status_code == 202
    token = first.cookies.get(SESSION_COOKIE)
    assert token

    second = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "two"},
        cookies={SESSION_COOKIE: token},
    )
    assert second.status_code == 202
    assert second.json()["entry_id"] == first.json()["entry_id"]

    entry = db_session.get(ModerationEntry, first.json()["entry_id"], populate_existing=True)
    assert entry.text == "two"
    assert entry.preload_id == "]" + token


def test_invalid_token_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "Hello"},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


def test_token_of_unknown_user(client: TestClient) -> None:
    response = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "Hello"},
        headers=auth_headers("Ghost"),
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "User not found"


def test_missing_section(client: TestClient, trusted: Actor) -> None:
    headers = auth_headers("Trusted")
    client.post("/api/v1/pages/edit", json={"title": "Sandbox", "text": "Hello"}, headers=headers)
    response = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "== X ==\nx", "section": "5"},
        headers=headers,
    )
    assert response.status_code == 400


def test_conflicting_trusted_edit(client: TestClient, trusted: Actor) -> None:
    headers = auth_headers("Trusted")
    base = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "a\nb\nc"},
        headers=headers,
    ).json()["revision_id"]
    client.post("/api/v1/pages/edit", json={"title": "Sandbox", "text": "a\nB\nc"}, headers=headers)

    response = client.post(
        "/api/v1/pages/edit",
        json={"title": "Sandbox", "text": "a\nb!\nc", "base_revision_id": base},
        headers=headers,
    )
    assert response.status_code == 409


def test_history_is_newest_first(client: TestClient, trusted: Actor) -> None:
    headers = auth_headers("Trusted")
    client.post("/api/v1/pages/edit", json={"title": "Sandbox", "text": "one"}, headers=headers)
    client.post("/api/v1/pages/edit", json={"title": "Sandbox", "text": "two"}, headers=headers)

    history = client.get("/api/v1/pages/0/Sandbox/history")
    assert history.status_code == 200
    revisions = history.json()
    assert len(revisions) == 2
    assert revisions[0]["parent_id"] == revisions[1]["id"]
    assert {rev["user_text"] for rev in revisions} == {"Trusted"}


def test_missing_page(client: TestClient) -> None:
    assert client.get("/api/v1/pages/0/Nowhere").status_code == 404
    assert client.get("/api/v1/pages/0/Nowhere/history").status_code == 404


def test_upload_is_queued(client: TestClient, editor: Actor) -> None:
    response = client.post(
        "/api/v1/pages/upload",
        json={
            "filename": "Cat.png",
            "data_base64": base64.b64encode(b"\x89PNG fake").decode(),
            "description": "A cat",
        },
        headers=auth_headers("Editor"),
    )
    assert response.status_code == 202
    assert response.json()["code"] == "moderation-image-queued"


def test_trusted_upload_creates_description_page(client: TestClient, trusted: Actor) -> None:
    response = client.post(
        "/api/v1/pages/upload",
        json={
            "filename": "Cat.png",
            "data_base64": base64.b64encode(b"\x89PNG fake").decode(),
            "description": "A cat",
        },
        headers=auth_headers("Trusted"),
    )
    assert response.status_code == 200
    assert response.json()["new_page"] is True

    page = client.get("/api/v1/pages/6/Cat.png")
    assert page.status_code == 200
    assert page.json()["text"] == "A cat"
    assert page.json()["latest"] == response.json()["revision_id"]


def test_upload_with_invalid_base64(client: TestClient, trusted: Actor) -> None:
    response = client.post(
        "/api/v1/pages/upload",
        json={"filename": "Cat.png", "data_base64": "***"},
        headers=auth_headers("Trusted"),
    )
    assert response.status_code == 400


def test_move_is_queued(client: TestClient, trusted: Actor, editor: Actor) -> None:
    client.post(
        "/api/v1/pages/edit",
        json={"title": "Old", "text": "Some text"},
        headers=auth_headers("Trusted"),
    )
    response = client.post(
        "/api/v1/pages/move",
        json={"title": "Old", "new_title": "New"},
        headers=auth_headers("Editor"),
    )
    assert response.status_code == 202
    assert response.json()["code"] == "moderation-move-queued"
    assert client.get("/api/v1/pages/0/Old").status_code == 200


def test_move_of_missing_page(client: TestClient, trusted: Actor) -> None:
    response = client.post(
        "/api/v1/pages/move",
        json={"title": "Nowhere", "new_title": "Somewhere"},
        headers=auth_headers("Trusted"),
    )
    assert response.status_code == 400

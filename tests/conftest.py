# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from dataclasses import dataclass

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Keep the notifier on its in-process cache.
os.environ["REDIS_URL"] = ""

from wiki_moderation.core.security import create_access_token
from wiki_moderation.core.settings import Settings
from wiki_moderation.db.session import Base
from wiki_moderation.db.session import get_db as app_get_session
from wiki_moderation.main import app as fastapi_app
from wiki_moderation.models import User
from wiki_moderation.services import (
    ApprovalEngine,
    ContentEngine,
    InterceptionPipeline,
    ModeratorNotifier,
    SkipPolicy,
    get_notifier,
)
from wiki_moderation.services.actor import Actor, RequestInfo
from wiki_moderation.services.content import SaveRequest
from wiki_moderation.services.exceptions import ModerationQueued

TEST_DB_URL = "sqlite://"

EDITOR_REQUEST = RequestInfo(
    ip="192.0.2.10",
    xff="198.51.100.7, 192.0.2.1",
    user_agent="EditorBrowser/1.0",
)
MODERATOR_REQUEST = RequestInfo(ip="203.0.113.5", user_agent="ModeratorBrowser/2.0")


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs these for SAVEPOINT to work inside an outer transaction.
    @event.listens_for(engine, "connect")
    def _no_implicit_transactions(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    # Commits made by the code under test only release a savepoint.
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def config() -> Settings:
    """Fresh settings; tests may change them freely."""
    return Settings(REDIS_URL="")


@pytest.fixture()
def notifier(config: Settings) -> ModeratorNotifier:
    return ModeratorNotifier(config)


@dataclass
class Wiki:
    """Services wired to the test session, as the API wires them per request."""

    db: Session
    config: Settings
    skip_policy: SkipPolicy
    content: ContentEngine
    interceptor: InterceptionPipeline
    approval: ApprovalEngine

    def edit(
        self,
        actor: Actor,
        title: str,
        text: str,
        *,
        namespace: int = 0,
        request: RequestInfo = EDITOR_REQUEST,
        **kwargs,  # type: ignore[no-untyped-def]
    ) -> int:
        """Save through the interception pipeline; return the queued entry id or revision id."""
        try:
            result = self.content.save(
                SaveRequest(
                    actor=actor,
                    namespace=namespace,
                    title=title,
                    text=text,
                    request=request,
                    **kwargs,
                ),
                [self.interceptor],
            )
        except ModerationQueued as exc:
            return exc.entry_id
        self.db.commit()
        return result.revision_id


def build_wiki(db: Session, config: Settings, notifier: ModeratorNotifier) -> Wiki:
    skip_policy = SkipPolicy(config)
    content = ContentEngine(db, config)
    interceptor = InterceptionPipeline(db, content, skip_policy, notifier)
    approval = ApprovalEngine(db, content, skip_policy, interceptor, notifier, config)
    return Wiki(db, config, skip_policy, content, interceptor, approval)


@pytest.fixture()
def wiki(db_session: Session, config: Settings, notifier: ModeratorNotifier) -> Wiki:
    return build_wiki(db_session, config, notifier)


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory persisting users with the given rights."""

    def _make_user(name: str, *rights: str) -> User:
        user = User(name=name, rights=" ".join(rights))
        db_session.add(user)
        db_session.flush()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def editor(make_user: Callable[..., User]) -> Actor:
    """A registered user whose changes are moderated."""
    return Actor.from_user(make_user("Editor"))


@pytest.fixture()
def other_editor(make_user: Callable[..., User]) -> Actor:
    return Actor.from_user(make_user("Other Editor"))


@pytest.fixture()
def moderator(make_user: Callable[..., User]) -> Actor:
    return Actor.from_user(make_user("Moderator", "moderation"))


@pytest.fixture()
def trusted(make_user: Callable[..., User]) -> Actor:
    """A registered user who bypasses moderation."""
    return Actor.from_user(make_user("Trusted", "skip-moderation"))


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(
    app: FastAPI,
    db_session: Session,
    notifier: ModeratorNotifier,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def auth_headers(name: str) -> dict[str, str]:
    """Return authorization headers for the user called ``name``."""
    return {"Authorization": f"Bearer {create_access_token(name)}"}

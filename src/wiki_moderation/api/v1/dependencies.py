"""Shared API dependencies for identity and moderation services."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from wiki_moderation.core.security import decode_access_token
from wiki_moderation.core.settings import settings
from wiki_moderation.db.session import get_db
from wiki_moderation.models import User
from wiki_moderation.services import (
    ApprovalEngine,
    ContentEngine,
    InterceptionPipeline,
    ModeratorNotifier,
    SkipPolicy,
    get_notifier,
)
from wiki_moderation.services.actor import RIGHT_MODERATION, Actor, RequestInfo

# Cookie holding the anonymous editing session token.
SESSION_COOKIE = "modsession"

# Editing is open to anonymous visitors, so a missing token is not an error.
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]
NotifierDep = Annotated[ModeratorNotifier, Depends(get_notifier)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> User | None:
    """Return the user of the bearer token, or None for anonymous requests.

    Raises:
        HTTPException: If a token is present but invalid, or its user is gone.
    """
    if credentials is None:
        return None
    try:
        name = decode_access_token(credentials.credentials)
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err
    if name is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.query(User).filter(User.name == name).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_request_info(request: Request) -> RequestInfo:
    """Collect the origin metadata of ``request``."""
    return RequestInfo(
        ip=request.client.host if request.client else None,
        xff=request.headers.get("x-forwarded-for"),
        user_agent=request.headers.get("user-agent"),
        session_token=request.cookies.get(SESSION_COOKIE),
    )


RequestInfoDep = Annotated[RequestInfo, Depends(get_request_info)]


def get_actor(
    user: Annotated[User | None, Depends(get_current_user)],
    info: RequestInfoDep,
) -> Actor:
    """Return the performer of the request: the token's user or the client IP."""
    if user is not None:
        return Actor.from_user(user)
    return Actor.anonymous(info.ip or "127.0.0.1")


ActorDep = Annotated[Actor, Depends(get_actor)]


def require_moderator(actor: ActorDep) -> Actor:
    """Ensure the caller is logged in and holds the moderation right."""
    if not actor.logged_in:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    if not actor.is_allowed(RIGHT_MODERATION):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Moderation right required",
        )
    return actor


ModeratorDep = Annotated[Actor, Depends(require_moderator)]


@dataclass
class ModerationServices:
    """Services of one request, wired to its database session."""

    skip_policy: SkipPolicy
    content: ContentEngine
    interceptor: InterceptionPipeline
    approval: ApprovalEngine


def get_services(db: SessionDep, notifier: NotifierDep) -> ModerationServices:
    """Build the moderation services for this request.

    The skip policy carries the approve mode flag, so each request gets its own.
    """
    skip_policy = SkipPolicy(settings)
    content = ContentEngine(db, settings)
    interceptor = InterceptionPipeline(db, content, skip_policy, notifier)
    approval = ApprovalEngine(db, content, skip_policy, interceptor, notifier, settings)
    return ModerationServices(skip_policy, content, interceptor, approval)


ServicesDep = Annotated[ModerationServices, Depends(get_services)]

"""Editor-facing endpoints: saving, moving and uploading pages."""

from __future__ import annotations

import base64
import binascii

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from wiki_moderation.api.v1.dependencies import (
    SESSION_COOKIE,
    ActorDep,
    RequestInfoDep,
    ServicesDep,
    SessionDep,
)
from wiki_moderation.models import Page
from wiki_moderation.schemas.page import (
    EditRequest,
    MoveRequestBody,
    PageResponse,
    QueuedResponse,
    RevisionResponse,
    SaveResponse,
    UploadRequestBody,
)
from wiki_moderation.services.content import (
    ContentError,
    MoveRequest,
    SaveConflictError,
    SaveRequest,
    UploadRequest,
)
from wiki_moderation.services.exceptions import ModerationQueued
from wiki_moderation.services.preload import PreloadSlotIndex

router = APIRouter(prefix="/pages", tags=["pages"])

_QUEUED_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_202_ACCEPTED: {"model": QueuedResponse, "description": "Queued for moderation"},
}


def _queued(exc: ModerationQueued) -> JSONResponse:
    """Answer a change that now awaits moderation.

    Anonymous editors get their session token back as a cookie, so their next
    edit of the same page updates the queued one.
    """
    response = JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=QueuedResponse(entry_id=exc.entry_id, code=exc.code).model_dump(),
    )
    token = PreloadSlotIndex.session_token_of(exc.preload_id)
    if token:
        response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
    return response


def _content_error(exc: ContentError) -> HTTPException:
    if isinstance(exc, SaveConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("/edit", response_model=SaveResponse, responses=_QUEUED_RESPONSES)
async def edit_page(
    payload: EditRequest,
    actor: ActorDep,
    info: RequestInfoDep,
    services: ServicesDep,
    db: SessionDep,
) -> SaveResponse | JSONResponse:
    """Save a page, or queue the edit if the editor is moderated."""
    request = SaveRequest(
        actor=actor,
        namespace=payload.namespace,
        title=payload.title,
        text=payload.text,
        comment=payload.comment,
        minor=payload.minor,
        section=payload.section,
        base_revision_id=payload.base_revision_id,
        watch=payload.watch,
        tags=tuple(payload.tags),
        content_model=payload.content_model,
        request=info,
    )
    try:
        result = services.content.save(request, [services.interceptor])
    except ModerationQueued as exc:
        return _queued(exc)
    except ContentError as exc:
        db.rollback()
        raise _content_error(exc) from exc

    db.commit()
    return SaveResponse(revision_id=result.revision_id, new_page=result.new_page)


@router.post("/move", response_model=SaveResponse, responses=_QUEUED_RESPONSES)
async def move_page(
    payload: MoveRequestBody,
    actor: ActorDep,
    info: RequestInfoDep,
    services: ServicesDep,
    db: SessionDep,
) -> SaveResponse | JSONResponse:
    """Rename a page, or queue the move if the editor is moderated."""
    request = MoveRequest(
        actor=actor,
        namespace=payload.namespace,
        title=payload.title,
        new_namespace=payload.new_namespace,
        new_title=payload.new_title,
        comment=payload.comment,
        leave_redirect=payload.leave_redirect,
        request=info,
    )
    try:
        result = services.content.move(request, [services.interceptor])
    except ModerationQueued as exc:
        return _queued(exc)
    except ContentError as exc:
        db.rollback()
        raise _content_error(exc) from exc

    db.commit()
    return SaveResponse(revision_id=result.revision_id)


@router.post("/upload", response_model=SaveResponse, responses=_QUEUED_RESPONSES)
async def upload_file(
    payload: UploadRequestBody,
    actor: ActorDep,
    info: RequestInfoDep,
    services: ServicesDep,
    db: SessionDep,
) -> SaveResponse | JSONResponse:
    """Upload a file, or queue the upload if the uploader is moderated."""
    try:
        data = base64.b64decode(payload.data_base64, validate=True)
    except (binascii.Error, ValueError) as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="data_base64 is not valid base64",
        ) from err

    request = UploadRequest(
        actor=actor,
        filename=payload.filename,
        data=data,
        comment=payload.comment,
        description=payload.description,
        watch=payload.watch,
        tags=tuple(payload.tags),
        request=info,
    )
    try:
        result = services.content.upload(request, [services.interceptor])
    except ModerationQueued as exc:
        return _queued(exc)
    except ContentError as exc:
        db.rollback()
        raise _content_error(exc) from exc

    db.commit()
    return SaveResponse(revision_id=result.revision_id, new_page=not result.reupload)


def _get_page_or_404(services: ServicesDep, namespace: int, title: str) -> Page:
    page = services.content.get_page(namespace, title)
    if page is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Page not found",
        )
    return page


@router.get("/{namespace}/{title}", response_model=PageResponse)
async def get_page(namespace: int, title: str, services: ServicesDep) -> PageResponse:
    """Return the current text of a page."""
    page = _get_page_or_404(services, namespace, title)
    return PageResponse(
        namespace=page.namespace,
        title=page.title,
        latest=page.latest,
        content_model=page.content_model,
        is_redirect=page.is_redirect,
        text=services.content.page_text(page),
    )


@router.get("/{namespace}/{title}/history", response_model=list[RevisionResponse])
async def get_history(namespace: int, title: str, services: ServicesDep) -> list[RevisionResponse]:
    """Return the revisions of a page, newest first."""
    page = _get_page_or_404(services, namespace, title)
    return [RevisionResponse.model_validate(rev) for rev in services.content.history(page)]

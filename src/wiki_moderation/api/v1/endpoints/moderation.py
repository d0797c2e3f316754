"""Moderator-facing endpoints for reviewing the queue."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from wiki_moderation.api.v1.dependencies import (
    ModeratorDep,
    NotifierDep,
    RequestInfoDep,
    ServicesDep,
    SessionDep,
)
from wiki_moderation.models import ModerationEntry
from wiki_moderation.schemas.moderation import (
    ApproveResponse,
    AuthorActionRequest,
    BatchRequest,
    BatchResponse,
    BlockRequest,
    BlockResponse,
    MergeRequest,
    ModerationEntryDetail,
    ModerationEntryResponse,
    PendingTimeResponse,
    RejectCountResponse,
)
from wiki_moderation.services.entry_store import FOLDER_PENDING, FOLDERS, EntryStore
from wiki_moderation.services.exceptions import (
    AlreadyMergedError,
    AlreadyRejectedError,
    EditConflictError,
    EntryNotFoundError,
    ModerationError,
    PermissionDeniedError,
)

router = APIRouter(prefix="/moderation", tags=["moderation"])

_STATUS_BY_ERROR: dict[type[ModerationError], int] = {
    EntryNotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyMergedError: status.HTTP_409_CONFLICT,
    AlreadyRejectedError: status.HTTP_409_CONFLICT,
    EditConflictError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
}


def _http_error(exc: ModerationError) -> HTTPException:
    """Translate a moderation error into a response carrying its code."""
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=exc.code)


@router.get("/queue", response_model=list[ModerationEntryResponse])
async def get_queue(
    moderator: ModeratorDep,
    db: SessionDep,
    folder: str = Query(FOLDER_PENDING),
    limit: int = Query(50, ge=1, le=200),
    before: int | None = Query(None),
) -> list[ModerationEntry]:
    """List one folder of the queue, newest first."""
    if folder not in FOLDERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown folder: {folder}",
        )
    return EntryStore(db).list_folder(folder, limit=limit, before=before)


@router.get("/pending-time", response_model=PendingTimeResponse)
async def get_pending_time(
    moderator: ModeratorDep,
    db: SessionDep,
    notifier: NotifierDep,
) -> PendingTimeResponse:
    """Return when the newest pending change was queued."""
    return PendingTimeResponse(pending_since=notifier.get_pending_time(db))


@router.post("/approve-batch", response_model=BatchResponse)
async def approve_batch(
    payload: BatchRequest,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> BatchResponse:
    """Approve several entries; failed ones are reported with their code."""
    result = services.approval.approve_batch(payload.ids, moderator, info)
    return BatchResponse(succeeded=result.succeeded, failed=result.failed)


@router.post("/approveall", response_model=BatchResponse)
async def approve_all(
    payload: AuthorActionRequest,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> BatchResponse:
    """Approve every pending change by one author."""
    result = services.approval.approve_all(
        payload.author,
        moderator,
        payload.namespace,
        payload.title,
        request=info,
    )
    return BatchResponse(succeeded=result.succeeded, failed=result.failed)


@router.post("/reject-batch", response_model=RejectCountResponse)
async def reject_batch(
    payload: BatchRequest,
    moderator: ModeratorDep,
    services: ServicesDep,
) -> RejectCountResponse:
    """Reject several entries at once."""
    return RejectCountResponse(rejected=services.approval.reject_batch(payload.ids, moderator))


@router.post("/rejectall", response_model=RejectCountResponse)
async def reject_all(
    payload: AuthorActionRequest,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> RejectCountResponse:
    """Reject every pending change by one author."""
    count = services.approval.reject_all(payload.author, moderator, request=info)
    return RejectCountResponse(rejected=count)


@router.post("/block", response_model=BlockResponse)
async def block(
    payload: BlockRequest,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> BlockResponse:
    """Send future changes by a user or IP straight to the rejected folder."""
    changed = services.approval.block(payload.address, moderator, request=info)
    return BlockResponse(address=payload.address, changed=changed)


@router.post("/unblock", response_model=BlockResponse)
async def unblock(
    payload: BlockRequest,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> BlockResponse:
    """Lift a moderation block."""
    changed = services.approval.unblock(payload.address, moderator, request=info)
    return BlockResponse(address=payload.address, changed=changed)


@router.get("/{entry_id}", response_model=ModerationEntryDetail)
async def get_entry(entry_id: int, moderator: ModeratorDep, db: SessionDep) -> ModerationEntry:
    """Return one queued change including its text."""
    try:
        return EntryStore(db).load_by_id(entry_id)
    except ModerationError as exc:
        raise _http_error(exc) from exc


@router.post("/{entry_id}/approve", response_model=ApproveResponse)
async def approve(
    entry_id: int,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> ApproveResponse:
    """Approve a queued change, recording it as made by its author."""
    try:
        revision_id = services.approval.approve(entry_id, moderator, info)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return ApproveResponse(entry_id=entry_id, revision_id=revision_id)


@router.post("/{entry_id}/reject", status_code=status.HTTP_200_OK)
async def reject(
    entry_id: int,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> dict[str, str | int]:
    """Reject a queued change."""
    try:
        services.approval.reject(entry_id, moderator, info)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return {"status": "rejected", "entry_id": entry_id}


@router.post("/{entry_id}/merge", response_model=ApproveResponse)
async def merge(
    entry_id: int,
    payload: MergeRequest,
    moderator: ModeratorDep,
    info: RequestInfoDep,
    services: ServicesDep,
) -> ApproveResponse:
    """Save a hand-merged version of a conflicting change."""
    try:
        revision_id = services.approval.merge(entry_id, moderator, payload.text, info)
    except ModerationError as exc:
        raise _http_error(exc) from exc
    return ApproveResponse(entry_id=entry_id, revision_id=revision_id)

"""
SmartNotes Backend — Collaboration Routes
===========================================

What:  Sharing notes with other accounts, managing collaborator permissions,
       live edits, and the per-note change stream.
How:   REST handlers delegate to CollaborationService. The WebSocket handler
       authenticates with a `token` query parameter (browsers can't set headers
       on a WebSocket handshake) and then relays events from the realtime hub.

Event frames sent over the socket:
    {"event": "UPDATE", "table": "notes", "record": {...}, "cursor": 12,
     "user_id": "...", "timestamp": "..."}

Close codes: 4401 bad token, 4404 note not visible, 4403 access revoked.
"""

import asyncio
import logging
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, WebSocket, WebSocketDisconnect, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import async_session_factory, get_db_session
from smartnotes.deps import get_current_user, resolve_user
from smartnotes.exceptions import SmartNotesError
from smartnotes.models.user import User
from smartnotes.schemas.collaboration import (
    CollaboratorSummary,
    InviteRequest,
    PermissionUpdate,
    RealtimeEditRequest,
    RealtimeEditResponse,
    SharedNoteResponse,
    ShareRequest,
    ShareResult,
)
from smartnotes.schemas.common import ErrorResponse
from smartnotes.services.collaboration_service import collaboration_service
from smartnotes.services.note_service import note_service
from smartnotes.services.realtime import ACCESS_REVOKED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/collaboration", tags=["Collaboration"])

WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403
WS_NOT_FOUND = 4404


@router.get("/shared", response_model=List[SharedNoteResponse], summary="Notes shared with me")
async def shared_notes(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[SharedNoteResponse]:
    return await collaboration_service.get_shared_notes(db, user.id)


@router.get("/collaborators", response_model=List[CollaboratorSummary], summary="People I work with")
async def collaborators(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[CollaboratorSummary]:
    return await collaboration_service.get_collaborators(db, user.id)


@router.post(
    "/invite",
    status_code=201,
    response_model=ShareResult,
    responses={400: {"description": "Invalid invitation", "model": ErrorResponse}},
    summary="Invite someone by email",
)
async def invite(
    body: InviteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ShareResult:
    return await collaboration_service.invite_collaborator(
        db, user.id, body.email, note_id=body.note_id, permission=body.permission
    )


@router.post(
    "/notes/{note_id}/share",
    status_code=201,
    response_model=ShareResult,
    responses={
        403: {"description": "Only the owner or an admin can share", "model": ErrorResponse},
        409: {"description": "Already a collaborator", "model": ErrorResponse},
    },
    summary="Share a note with an account",
)
async def share_note(
    note_id: UUID,
    body: ShareRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ShareResult:
    return await collaboration_service.share_note(db, user.id, note_id, body.email, body.permission)


@router.patch(
    "/notes/{note_id}/collaborators/{collaborator_id}",
    status_code=204,
    summary="Change a collaborator's permission",
)
async def update_permission(
    note_id: UUID,
    collaborator_id: UUID,
    body: PermissionUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await collaboration_service.update_permissions(db, user.id, note_id, collaborator_id, body.permission)
    return Response(status_code=204)


@router.delete(
    "/notes/{note_id}/collaborators/{collaborator_id}",
    status_code=204,
    summary="Remove a collaborator (or leave a shared note)",
)
async def remove_collaborator(
    note_id: UUID,
    collaborator_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await collaboration_service.remove_collaborator(db, user.id, note_id, collaborator_id)
    return Response(status_code=204)


@router.post(
    "/notes/{note_id}/edit",
    response_model=RealtimeEditResponse,
    summary="Save a live edit and broadcast it",
)
async def realtime_edit(
    note_id: UUID,
    body: RealtimeEditRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> RealtimeEditResponse:
    return await collaboration_service.save_realtime_edit(db, user.id, note_id, body.content, body.cursor)


async def _authorize_stream(token: str, note_id: UUID) -> Tuple[int, Optional[UUID]]:
    """
    Check the socket's token and note access with a short-lived session.

    Returns:
        (0, user ID) when the stream may open, otherwise (close code, None).
    """
    async with async_session_factory() as db:
        try:
            user = await resolve_user(db, token)
        except SmartNotesError:
            return WS_UNAUTHORIZED, None
        try:
            await note_service.get_accessible_note(db, user.id, note_id)
        except SmartNotesError:
            return WS_NOT_FOUND, None
        await db.commit()
    return 0, user.id


@router.websocket("/notes/{note_id}/live")
async def live_changes(websocket: WebSocket, note_id: UUID, token: str = Query(default="")):
    """
    Stream INSERT/UPDATE/DELETE events for one note until the client disconnects.

    The socket is closed with 4403 when the user is removed from the note.
    """
    try:
        close_code, user_id = await _authorize_stream(token, note_id)
    except SQLAlchemyError as e:
        logger.error("Database error authorizing live stream for %s: %s", note_id, str(e))
        close_code, user_id = status.WS_1011_INTERNAL_ERROR, None
    if close_code:
        await websocket.close(code=close_code)
        return

    # Subscribed before accept so no change after the handshake is missed
    queue = collaboration_service.subscribe(note_id, user_id)

    async def forward_events() -> None:
        while True:
            message = await queue.get()
            if message is ACCESS_REVOKED:
                logger.info("Live stream for note %s closed: access revoked for %s", note_id, user_id)
                await websocket.close(code=WS_FORBIDDEN)
                return
            await websocket.send_json(message)

    async def wait_for_disconnect() -> None:
        # Client frames carry nothing; reading them is how a close is noticed.
        while True:
            await websocket.receive_text()

    tasks: List[asyncio.Task] = []
    try:
        await websocket.accept()
        logger.info("Live stream opened for note %s", note_id)
        tasks = [asyncio.create_task(forward_events()), asyncio.create_task(wait_for_disconnect())]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error("Live stream error for note %s: %s", note_id, str(error))
    finally:
        for task in tasks:
            task.cancel()
        collaboration_service.unsubscribe(note_id, queue)
        logger.info("Live stream closed for note %s", note_id)

"""Read-state API routes.

- GET /read-state/{conversation_id}: the viewer's watermark (epoch if never read)
- PUT /read-state/{conversation_id}: mark read at the server's current time
- GET /unread?otherUserId=: unread counts for both conversations with a user
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from santachat.api.deps import get_app_settings, get_db
from santachat.auth.middleware import Viewer, get_viewer
from santachat.config import Settings
from santachat.responses import success_response
from santachat.schemas.message import ReadStateOut, UnreadCountsOut
from santachat.services import read_state as read_state_service

router = APIRouter(tags=["read-state"])


@router.get("/read-state/{conversation_id}")
def get_read_state(
    conversation_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    read_state_service.check_conversation_access(viewer.user_id, conversation_id)
    watermark = read_state_service.get_watermark(db, viewer.user_id, conversation_id)
    out = ReadStateOut(conversation_id=conversation_id, last_read_at=watermark)
    return success_response(out.model_dump(by_alias=True))


@router.put("/read-state/{conversation_id}")
def mark_read(
    conversation_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Mark the conversation read as of now (server clock).

    The watermark never moves backward while LAST_READ_GUARD_MONOTONIC is on.
    """
    read_state_service.check_conversation_access(viewer.user_id, conversation_id)
    watermark = read_state_service.mark_read(
        db,
        viewer.user_id,
        conversation_id,
        guard_monotonic=settings.last_read_guard_monotonic,
    )
    out = ReadStateOut(conversation_id=conversation_id, last_read_at=watermark)
    return success_response(out.model_dump(by_alias=True))


@router.get("/unread")
def get_unread_counts(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    other_user_id: str = Query(alias="otherUserId", min_length=1),
) -> dict:
    """Unread counts for the viewer's two conversations with otherUserId.

    Errors:
        E_NOT_FOUND (404): otherUserId is not a known user.
    """
    counts = read_state_service.unread_counts(db, viewer.user_id, other_user_id)
    return success_response(UnreadCountsOut(**counts).model_dump(by_alias=True))

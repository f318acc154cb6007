"""Message API routes.

Routes are transport-only: each calls exactly one service function.

- POST /messages/send: idempotent send keyed by clientMessageId
- GET /messages: the viewer's feed, newest first
- GET /messages/conversation: one directed conversation, oldest first

The send endpoint answers {"success": true, "message": ..., "replayed"?: true};
the read endpoints use the {"data": ...} envelope.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from santachat.api.deps import get_app_settings, get_db, get_notification_dispatcher
from santachat.auth.middleware import Viewer, get_viewer
from santachat.config import Settings
from santachat.responses import send_response, success_response
from santachat.schemas.message import SendMessageRequest, dump_message
from santachat.services import messages as messages_service
from santachat.services import send_message as send_message_service
from santachat.services.notifications import NotificationDispatcher

router = APIRouter(tags=["messages"])


@router.post("/messages/send")
def send_message(
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    dispatcher: Annotated[NotificationDispatcher | None, Depends(get_notification_dispatcher)],
) -> dict:
    """Persist a message at most once per clientMessageId.

    Errors:
        E_INVALID_REQUEST, E_MESSAGE_EMPTY, E_MESSAGE_TOO_LONG,
        E_INVALID_CLIENT_MESSAGE_ID, E_INVALID_CLIENT_CREATED_AT,
        E_RECIPIENT_NOT_FOUND (400)
        E_UNKNOWN_SENDER (403)
        E_MESSAGE_ID_CONFLICT (409): id reused with different content
        E_WRITE_FAILED (500): storage kept failing
    """
    outcome = send_message_service.send_message(
        db=db,
        sender_id=viewer.user_id,
        request=body,
        settings=settings,
        dispatcher=dispatcher,
    )
    return send_response(dump_message(outcome.message), replayed=outcome.replayed)


@router.get("/messages")
def list_messages(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=200, ge=1, le=500, description="Maximum results (1-500)"),
) -> dict:
    """Messages the viewer sent or received, newest first."""
    messages = messages_service.list_messages_for_user(db, viewer.user_id, limit=limit)
    return success_response([dump_message(m) for m in messages])


@router.get("/messages/conversation")
def list_conversation(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    other_user_id: str = Query(alias="otherUserId", min_length=1),
    conversation_id: str | None = Query(default=None, alias="conversationId"),
) -> dict:
    """One conversation with otherUserId, oldest first.

    Legacy messages (no conversationId) between the pair appear in every
    conversation of that pair.
    """
    messages = messages_service.list_conversation(
        db, viewer.user_id, other_user_id, conversation_id
    )
    return success_response([dump_message(m) for m in messages])

"""Chat endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from fieldsync_core import chat, schemas
from fieldsync_core.api.dependencies import BUSINESS_ERRORS, CurrentUser, get_current_user, http_error

from ...database import get_db

logger = logging.getLogger("fieldsync-core.chat")

router = APIRouter(tags=["chat"])


@router.post("/", response_model=schemas.ChatMessageResponse, status_code=201)
def send_message(
    message: schemas.ChatMessageCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Send a direct or group message.

    - **recipient_id**: Recipient of a direct message
    - **is_group_message**: True for the team channel (no recipient)
    - **message**: Text (may be empty when an image is attached)
    - **image_url**: Reference to an uploaded image (optional)
    """
    try:
        return chat.send_message(db, current_user.user_id, message)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.get("/", response_model=list[schemas.ChatMessageResponse])
def list_messages(
    partner_id: Optional[UUID] = Query(None, description="Direct conversation with this user"),
    group: bool = Query(False, description="Team channel"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List messages, oldest first.

    - ``?partner_id=...``: the latest 100 messages of a direct conversation
    - ``?group=true``: the latest 100 team channel messages
    - neither: every message the caller can see
    """
    if group:
        return chat.get_group_messages(db)
    if partner_id is not None:
        return chat.get_conversation(db, current_user.user_id, partner_id)
    return chat.get_messages_for_user(db, current_user.user_id)


@router.get("/unread", response_model=list[schemas.UnreadCount])
def get_unread_counts(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Unread direct message counts per sender."""
    counts = chat.unread_counts(db, current_user.user_id)
    return [schemas.UnreadCount(sender_id=sender_id, count=count) for sender_id, count in counts.items()]


@router.get("/{message_id}", response_model=schemas.ChatMessageResponse)
def get_message(
    message_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get a single message visible to the caller."""
    message = chat.get_message(db, current_user.user_id, message_id)
    if message is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "message": f"Message not found: {message_id}"},
        )
    return message


@router.post("/{message_id}/read", response_model=schemas.ChatMessageResponse)
def mark_message_read(
    message_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark a direct message read (recipient only). The first read time is kept."""
    try:
        return chat.mark_read(db, current_user.user_id, message_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.post("/conversations/{sender_id}/read", response_model=schemas.MarkReadResult)
def mark_conversation_read(
    sender_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark every unread message from ``sender_id`` to the caller read in one batch."""
    updated = chat.mark_conversation_read(db, current_user.user_id, sender_id)
    return schemas.MarkReadResult(updated=updated)

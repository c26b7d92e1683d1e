"""In-app notification and web push endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from fieldsync_core import crud, notifications, schemas
from fieldsync_core.api.dependencies import (
    BUSINESS_ERRORS,
    CurrentUser,
    get_current_user,
    http_error,
    require_admin_user,
)
from fieldsync_core.push import PushDispatcher, build_push_payload

from ...database import get_db

logger = logging.getLogger("fieldsync-core.notifications")

router = APIRouter(tags=["notifications"])
push_router = APIRouter(tags=["push"])


def get_push_dispatcher():
    """Dependency yielding a push dispatcher bound to one request."""
    dispatcher = PushDispatcher()
    try:
        yield dispatcher
    finally:
        dispatcher.close()


@router.get("/", response_model=list[schemas.NotificationResponse])
def list_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's notifications, newest first."""
    return notifications.get_notifications(db, current_user.user_id, unread_only=unread_only, limit=limit)


@router.post("/read-all", response_model=schemas.MarkReadResult)
def mark_all_read(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark every unread notification of the caller read."""
    updated = notifications.mark_all_notifications_read(db, current_user.user_id)
    return schemas.MarkReadResult(updated=updated)


@router.post("/{notification_id}/read", response_model=schemas.NotificationResponse)
def mark_read(
    notification_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark one notification read. The first read time is kept."""
    try:
        return notifications.mark_notification_read(db, current_user.user_id, notification_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


# ============================================================================
# Web push
# ============================================================================

@push_router.post("/subscriptions", response_model=schemas.PushSubscriptionResponse, status_code=201)
def subscribe(
    subscription: schemas.PushSubscriptionCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Register a browser push endpoint for the caller."""
    return crud.save_push_subscription(db, current_user.user_id, subscription)


@push_router.get("/subscriptions", response_model=list[schemas.PushSubscriptionResponse])
def list_subscriptions(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_push_subscriptions(db, current_user.user_id)


@push_router.delete("/subscriptions", status_code=204)
def unsubscribe(
    endpoint: str = Query(..., description="Endpoint URL to remove"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Remove one of the caller's push endpoints."""
    if not crud.delete_push_subscription(db, current_user.user_id, endpoint):
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "message": "Push subscription not found"},
        )
    return Response(status_code=204)


@push_router.post("/send", response_model=schemas.PushSendResult)
def send_push(
    request: schemas.PushSendRequest,
    current_user: CurrentUser = Depends(require_admin_user),
    db: Session = Depends(get_db),
    dispatcher: PushDispatcher = Depends(get_push_dispatcher),
):
    """
    Send a push notification to every endpoint of a user (admin only).

    Delivery is best effort: failures are counted, gone endpoints are pruned.
    """
    payload = build_push_payload(
        title=request.title,
        body=request.body,
        url=request.url,
        tag=request.tag,
    )
    result = dispatcher.send_to_user(db, request.user_id, payload)
    return schemas.PushSendResult(sent=result.sent, failed=result.failed)

"""Notification endpoints - listing, read state, dismissal and the event feed"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.exc import SQLAlchemyError

from paydesk.api.dependencies import (
    get_event_channel,
    get_notification_repository,
    get_request_id,
    get_scheduler,
)
from paydesk.api.v1.schemas import (
    CountResponse,
    DismissTodayRequest,
    EmitRequest,
    EventSchema,
    NotificationSchema,
)
from paydesk.domain.models import NotificationRecord
from paydesk.domain.notifications import derive_category, to_ui_type
from paydesk.infrastructure.database.repositories import NotificationRepository
from paydesk.services.event_channel import EventChannel
from paydesk.services.notification_scheduler import NotificationScheduler

router = APIRouter()


def _to_schema(record: NotificationRecord) -> NotificationSchema:
    return NotificationSchema(
        notification_id=record.id,
        message=record.message,
        type=to_ui_type(record.type),
        category=derive_category(record.message_key),
        message_key=record.message_key,
        created_at=record.created_at,
        read_at=record.read_at,
        deleted_at=record.deleted_at,
    )


def _store_error(e: SQLAlchemyError, request: Request) -> HTTPException:
    logging.error(f"Notification store error: {e}", extra={"request_id": get_request_id(request)})
    return HTTPException(status_code=503, detail="Store unavailable")


@router.get("/notifications", response_model=List[NotificationSchema])
def list_notifications(
    request: Request,
    limit: int = Query(20, ge=1, le=500),
    repo: NotificationRepository = Depends(get_notification_repository),
):
    """Active notifications, newest first"""
    try:
        return [_to_schema(r) for r in repo.list_active(limit)]
    except SQLAlchemyError as e:
        raise _store_error(e, request)


@router.post("/notifications", response_model=Optional[EventSchema])
def emit_notification(
    request_body: EmitRequest,
    request: Request,
    scheduler: NotificationScheduler = Depends(get_scheduler),
):
    """
    Emit a notification by hand.

    Returns the published event, or null when the same key or message was
    already surfaced today.
    """
    try:
        event = scheduler.emit(request_body.message, request_body.type, request_body.message_key)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SQLAlchemyError as e:
        raise _store_error(e, request)

    return EventSchema(**event.to_dict()) if event else None


@router.get("/notifications/archived", response_model=List[NotificationSchema])
def list_archived(
    request: Request,
    limit: int = Query(20, ge=1, le=500),
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        return [_to_schema(r) for r in repo.list_archived(limit)]
    except SQLAlchemyError as e:
        raise _store_error(e, request)


@router.delete("/notifications/archived", response_model=CountResponse)
def purge_archived(request: Request, repo: NotificationRepository = Depends(get_notification_repository)):
    """Permanently remove archived notifications"""
    try:
        return CountResponse(count=repo.purge_archived())
    except SQLAlchemyError as e:
        raise _store_error(e, request)


@router.get("/notifications/events", response_model=List[EventSchema])
def recent_events(
    since_id: Optional[int] = Query(None, description="Only events for notifications newer than this id"),
    channel: EventChannel = Depends(get_event_channel),
):
    """Recently published events, for clients that poll instead of subscribing"""
    return [EventSchema(**event.to_dict()) for event in channel.recent(since_id)]


@router.post("/notifications/clear", response_model=CountResponse)
def clear_all(request: Request, repo: NotificationRepository = Depends(get_notification_repository)):
    """Archive every active notification"""
    try:
        return CountResponse(count=repo.clear_all())
    except SQLAlchemyError as e:
        raise _store_error(e, request)


@router.post("/notifications/dismiss-today", response_model=CountResponse)
def dismiss_today(
    request_body: DismissTodayRequest,
    request: Request,
    repo: NotificationRepository = Depends(get_notification_repository),
):
    """Archive today's active notifications matching a key or exact message"""
    try:
        if request_body.message_key:
            count = repo.delete_by_key_today(request_body.message_key)
        else:
            count = repo.delete_by_message_today(request_body.message)
    except SQLAlchemyError as e:
        raise _store_error(e, request)
    return CountResponse(count=count)


@router.post("/notifications/{notification_id}/read", response_model=NotificationSchema)
def mark_read(
    notification_id: int,
    request: Request,
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        repo.mark_read(notification_id)
        record = repo.get_by_id(notification_id)
    except SQLAlchemyError as e:
        raise _store_error(e, request)
    if record is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return _to_schema(record)


@router.post("/notifications/{notification_id}/unread", response_model=NotificationSchema)
def mark_unread(
    notification_id: int,
    request: Request,
    repo: NotificationRepository = Depends(get_notification_repository),
):
    try:
        repo.mark_unread(notification_id)
        record = repo.get_by_id(notification_id)
    except SQLAlchemyError as e:
        raise _store_error(e, request)
    if record is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return _to_schema(record)


@router.delete("/notifications/{notification_id}", status_code=204)
def archive_notification(
    notification_id: int,
    request: Request,
    repo: NotificationRepository = Depends(get_notification_repository),
):
    """Archive (soft delete); the row still counts for same-day deduplication"""
    try:
        record = repo.get_by_id(notification_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Notification not found")
        repo.delete(notification_id)
    except SQLAlchemyError as e:
        raise _store_error(e, request)
    return Response(status_code=204)

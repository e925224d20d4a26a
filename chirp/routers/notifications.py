"""
Notification endpoints:
  GET  /notifications              — caller's notifications, newest first
  POST /notifications/{id}/read    — mark one read
  POST /notifications/read-all     — mark all read
  GET  /notifications/unread-count
"""
from fastapi import APIRouter, Depends, Query

from chirp.dependencies import get_notification_service
from chirp.schemas import CountResponse, NotificationPage, NotificationResponse
from chirp.security import get_current_user_id
from chirp.services.notifications import NotificationService

router = APIRouter()


@router.get("", response_model=NotificationPage)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await notifications.list_notifications(user_id, page, limit)


@router.post("/read-all", response_model=CountResponse)
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await notifications.mark_all_as_read(user_id)


@router.get("/unread-count", response_model=CountResponse)
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await notifications.get_unread_count(user_id)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    notifications: NotificationService = Depends(get_notification_service),
):
    return await notifications.mark_as_read(user_id, notification_id)

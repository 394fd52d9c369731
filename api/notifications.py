"""
Notifications API

Endpoints:
- GET /api/notifications - List notifications (optionally read/unread only)
- POST /api/notifications/{notification_id}/read - Mark as read
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.models import Notification
from rerank.database.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/notifications",
    tags=["Notifications"],
    dependencies=[Depends(get_current_user)],
)


def notification_response(notification: Notification) -> Dict[str, Any]:
    article = notification.article
    return {
        "id": str(notification.id),
        "article_id": str(notification.article_id) if notification.article_id else None,
        "article_url": article.url if article else None,
        "article_title": article.title if article else None,
        "notification_type": notification.notification_type.value,
        "channel": notification.channel.value,
        "subject": notification.subject,
        "summary": notification.summary,
        "notification_data": notification.notification_data,
        "sent_at": notification.sent_at.isoformat() if notification.sent_at else None,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


@router.get("")
def list_notifications(
    is_read: Optional[bool] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notifications, total = repository.list_notifications(db, current_user.id, is_read, limit, offset)
    return {
        "notifications": [notification_response(n) for n in notifications],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.post("/{notification_id}/read")
def mark_as_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = repository.mark_notification_read(db, current_user.id, notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification_response(notification)

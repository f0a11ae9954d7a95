import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from passport_access.core.clock import Clock
from passport_access.core.context import Actor
from passport_access.database import get_db
from passport_access.dependencies import get_current_actor, get_clock
from passport_access.services.notifications import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    page = NotificationService(db, clock).list_for(actor.actor_id, limit=limit, offset=offset,
                                                   unread_only=unread_only)
    page["notifications"] = [n.to_dict() for n in page["notifications"]]
    return {
        "success": True,
        "message": f"{page['unread_count']} unread notifications",
        "data": page,
    }


@router.get("/stats")
def notification_stats(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    stats = NotificationService(db, clock).stats(actor.actor_id)
    return {"success": True, "message": "Notification statistics retrieved", "data": stats}


@router.post("/read-all")
def mark_all_notifications_read(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    updated = NotificationService(db, clock).mark_all_read(actor.actor_id)
    return {"success": True, "message": "All notifications marked as read", "data": {"updated": updated}}


@router.post("/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    notification = NotificationService(db, clock).mark_read(notification_id, actor.actor_id)
    return {"success": True, "message": "Notification marked as read", "data": notification.to_dict()}


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    NotificationService(db, clock).delete(notification_id, actor.actor_id)
    return {"success": True, "message": "Notification deleted successfully", "data": {"id": notification_id}}

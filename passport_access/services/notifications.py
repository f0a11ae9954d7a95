"""
Notification Sink
Outbox for patient/clinician notifications.

Engines hand messages over only after their grant has committed. The sink
persists the in-app notification row, then sends the email on a bounded
worker pool. Nothing in here raises into the caller: failures are logged and
recorded on the row's delivery_status.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError, wait
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Dict, Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from passport_access.config import settings
from passport_access.core.clock import Clock, utcnow
from passport_access.core.error_handling import NotFoundError
from passport_access.core.logging import log_audit
from passport_access.models.notification import Notification, NOTIFICATION_TYPES, NOTIFICATION_PRIORITIES
from passport_access.models.user import User
from passport_access.services.mailer import Mailer, get_mailer

logger = logging.getLogger(__name__)


@dataclass
class NotificationMessage:
    recipient_user_id: str
    type: str
    title: str
    message: str
    priority: str = "medium"
    data: Dict[str, Any] = field(default_factory=dict)
    email_subject: Optional[str] = None
    email_html: Optional[str] = None

    @property
    def wants_email(self) -> bool:
        return bool(self.email_subject and self.email_html)


@dataclass
class DeliveryTicket:
    """Handle on one enqueued notification"""
    notification_id: Optional[str]
    future: Optional[Future] = None
    error: Optional[str] = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the email attempt finishes. True only if it was sent."""
        if self.future is None:
            return False
        try:
            return bool(self.future.result(timeout=timeout))
        except FutureTimeoutError:
            return False


class NotificationSink:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        mailer: Optional[Mailer] = None,
        clock: Clock = utcnow,
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.mailer = mailer or get_mailer()
        self.clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.NOTIFICATION_WORKERS,
            thread_name_prefix="notify",
        )
        self._pending: set = set()
        self._lock = threading.Lock()

    def enqueue(self, db: Session, message: NotificationMessage) -> DeliveryTicket:
        if message.type not in NOTIFICATION_TYPES or message.priority not in NOTIFICATION_PRIORITIES:
            logger.error(f"Dropping malformed notification: type={message.type} priority={message.priority}")
            return DeliveryTicket(None, error="malformed notification")

        now = self.clock()
        recipient_email = None
        if message.wants_email:
            recipient = db.query(User).filter(User.id == message.recipient_user_id).first()
            recipient_email = recipient.email if recipient else None

        row = Notification(
            recipient_user_id=message.recipient_user_id,
            type=message.type,
            title=message.title[:200],
            message=message.message[:1000],
            data=message.data,
            priority=message.priority,
            created_at=now,
            expires_at=now + timedelta(hours=settings.URGENT_NOTIFICATION_TTL_HOURS)
            if message.priority == "urgent" else None,
            delivery_status="queued" if recipient_email else "skipped",
        )
        try:
            db.add(row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to persist notification for {message.recipient_user_id}: {e}")
            return DeliveryTicket(None, error="notification not persisted")

        ticket = DeliveryTicket(row.id)
        if recipient_email:
            ticket.future = self._submit(row.id, recipient_email, message.email_subject, message.email_html)
        return ticket

    def _submit(self, notification_id: str, to: str, subject: str, html: str) -> Future:
        future = self._executor.submit(self._deliver, notification_id, to, subject, html)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, notification_id: str, to: str, subject: str, html: str) -> bool:
        status, error = "sent", None
        try:
            self.mailer.send(to, subject, html)
        except Exception as e:
            status, error = "failed", type(e).__name__
            logger.error(f"Email delivery failed for notification {notification_id}: {e}")

        db = self.session_factory()
        try:
            row = db.query(Notification).filter(Notification.id == notification_id).first()
            if row is not None:
                row.delivery_status = status
                row.delivery_error = error
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record delivery status for notification {notification_id}: {e}")
        finally:
            db.close()

        return status == "sent"

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for every in-flight delivery"""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


class NotificationService:
    """Recipient-side reads over the notification table"""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _visible(self, user_id: str):
        """The recipient's notifications that have not lapsed"""
        now = self.clock()
        return self.db.query(Notification).filter(
            Notification.recipient_user_id == user_id,
            (Notification.expires_at.is_(None)) | (Notification.expires_at > now),
        )

    def list_for(self, user_id: str, limit: int = 20, offset: int = 0, unread_only: bool = False) -> Dict[str, Any]:
        """
        Newest-first page of a user's notifications.

        Returns the page, pagination info and the overall unread count.
        """
        query = self._visible(user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))

        total = query.count()
        notifications = (
            query.order_by(Notification.created_at.desc(), Notification.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return {
            "notifications": notifications,
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + limit < total,
            },
            "unread_count": self.unread_count(user_id),
        }

    def unread_count(self, user_id: str) -> int:
        return self._visible(user_id).filter(Notification.is_read.is_(False)).count()

    def stats(self, user_id: str) -> Dict[str, int]:
        rows = self._visible(user_id).all()
        result = {"total": len(rows), "unread": sum(1 for n in rows if not n.is_read)}
        for priority in NOTIFICATION_PRIORITIES:
            result[priority] = sum(1 for n in rows if n.priority == priority)
        return result

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        row = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.recipient_user_id == user_id)
            .first()
        )
        if row is None:
            raise NotFoundError("Notification not found")
        if not row.is_read:
            row.is_read = True
            row.read_at = self.clock()
            self.db.commit()
            log_audit("notification_read", user_id, {"notification_id": notification_id})
        return row

    def mark_all_read(self, user_id: str) -> int:
        updated = (
            self.db.query(Notification)
            .filter(Notification.recipient_user_id == user_id, Notification.is_read.is_(False))
            .update({"is_read": True, "read_at": self.clock()}, synchronize_session=False)
        )
        self.db.commit()
        if updated:
            log_audit("notifications_read_all", user_id, {"count": updated})
        return updated

    def delete(self, notification_id: str, user_id: str) -> None:
        row = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.recipient_user_id == user_id)
            .first()
        )
        if row is None:
            raise NotFoundError("Notification not found")
        self.db.delete(row)
        self.db.commit()
        log_audit("notification_deleted", user_id, {"notification_id": notification_id})

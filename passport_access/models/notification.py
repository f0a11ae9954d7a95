import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, DateTime, Boolean, Text, JSON, Index
from passport_access.database import Base
from passport_access.core.clock import utcnow

NOTIFICATION_TYPES = ("access_request", "access_approved", "access_denied", "emergency_access", "otp_code")
NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")


class Notification(Base):
    """In-app notification; doubles as the outbox row for email delivery"""
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_user_id = Column(String, nullable=False, index=True)

    type = Column(String, nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    priority = Column(String, nullable=False, default="medium")

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    # "queued", "sent", "failed", "skipped"
    delivery_status = Column(String, nullable=False, default="queued")
    delivery_error = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_notification_recipient_read', 'recipient_user_id', 'is_read'),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        return {
            "id": self.id,
            "recipient_user_id": self.recipient_user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data or {},
            "priority": self.priority,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "delivery_status": self.delivery_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

"""
Consent requests: a clinician asks, the patient approves or denies, the grant expires.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, DateTime, Text, JSON, Index, event
from sqlalchemy.sql import func
from passport_access.database import Base
from passport_access.core.clock import utcnow

REQUEST_TYPES = ("view", "edit", "emergency")
REQUEST_STATUSES = ("pending", "approved", "denied", "expired")
TERMINAL_STATUSES = ("approved", "denied", "expired")

DATA_CATEGORIES = (
    "medical_history",
    "medications",
    "allergies",
    "lab_results",
    "imaging",
    "emergency_contacts",
    "insurance",
)


class AccessRequest(Base):
    """Patient consent request raised by a doctor"""
    __tablename__ = "access_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String, nullable=False, index=True)
    doctor_id = Column(String, nullable=False, index=True)
    hospital_id = Column(String, nullable=False, index=True)

    request_type = Column(String, nullable=False)  # "view", "edit", "emergency"
    reason = Column(Text, nullable=False)
    requested_data = Column(JSON, nullable=False)

    # Stored status is a cache; effective status depends on expires_at
    status = Column(String, nullable=False, default="pending", index=True)
    expires_at = Column(DateTime, nullable=False)

    approved_at = Column(DateTime, nullable=True)
    denied_at = Column(DateTime, nullable=True)
    patient_response = Column(String, nullable=True)
    patient_response_at = Column(DateTime, nullable=True)
    patient_response_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_access_request_pair_status', 'doctor_id', 'patient_id', 'status'),
        Index('idx_access_request_patient_status', 'patient_id', 'status'),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def effective_status(self, now: datetime) -> str:
        if self.is_expired(now):
            return "expired"
        return self.status

    def refresh_status(self, now: datetime) -> bool:
        """Bring the stored status in line with the clock. Returns True if it changed."""
        self._status_checked_at = now
        effective = self.effective_status(now)
        if effective != self.status:
            self.status = effective
            return True
        return False

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        status = self.effective_status(now) if now else self.status
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "hospital_id": self.hospital_id,
            "request_type": self.request_type,
            "reason": self.reason,
            "requested_data": list(self.requested_data or []),
            "status": status,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "denied_at": self.denied_at.isoformat() if self.denied_at else None,
            "patient_response": self.patient_response,
            "patient_response_at": self.patient_response_at.isoformat() if self.patient_response_at else None,
            "patient_response_reason": self.patient_response_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(AccessRequest, "before_insert")
@event.listens_for(AccessRequest, "before_update")
def _expire_before_persist(mapper, connection, target):
    # Use the engine clock reading from the last refresh; wall clock only when none ran
    now = getattr(target, "_status_checked_at", None) or utcnow()
    target.refresh_status(now)

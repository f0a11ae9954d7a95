"""
Append-only audit trail of every access-control decision
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index, event
from passport_access.database import Base

ACCESS_TYPES = ("regular", "emergency", "consent")
AUDIT_ACTIONS = ("view", "create", "update", "delete")
MAX_DETAILS_LENGTH = 1000


class AuditLogEntry(Base):
    __tablename__ = "audit_log_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String, nullable=False, index=True)
    patient_id = Column(String, nullable=False, index=True)

    access_type = Column(String, nullable=False)  # "regular", "emergency", "consent"
    action = Column(String, nullable=False)  # "view", "create", "update", "delete"
    details = Column(String(MAX_DETAILS_LENGTH), nullable=True)
    otp_verified = Column(Boolean, nullable=False, default=False)

    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)

    access_time = Column(DateTime, nullable=False, index=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    __table_args__ = (
        Index('idx_audit_patient_time', 'patient_id', 'access_time'),
        Index('idx_audit_actor_time', 'actor_id', 'access_time'),
        Index('idx_audit_access_type', 'access_type'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "patient_id": self.patient_id,
            "access_type": self.access_type,
            "action": self.action,
            "details": self.details,
            "otp_verified": self.otp_verified,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "access_time": self.access_time.isoformat() if self.access_time else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ValueError("Audit log entries are append-only")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ValueError("Audit log entries are append-only")

import uuid

from sqlalchemy import Column, String, DateTime, Text, Index, event
from passport_access.database import Base


class EmergencyOverride(Base):
    """Break-glass access record. Written once, never modified."""
    __tablename__ = "emergency_overrides"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    doctor_user_id = Column(String, nullable=False, index=True)
    patient_id = Column(String, nullable=False, index=True)
    hospital_id = Column(String, nullable=True, index=True)

    justification = Column(Text, nullable=False)
    access_time = Column(DateTime, nullable=False, index=True)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    __table_args__ = (
        Index('idx_emergency_pair_time', 'doctor_user_id', 'patient_id', 'access_time'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doctor_user_id": self.doctor_user_id,
            "patient_id": self.patient_id,
            "hospital_id": self.hospital_id,
            "justification": self.justification,
            "access_time": self.access_time.isoformat() if self.access_time else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


@event.listens_for(EmergencyOverride, "before_update")
def _reject_override_update(mapper, connection, target):
    raise ValueError("Emergency overrides are write-once")


@event.listens_for(EmergencyOverride, "before_delete")
def _reject_override_delete(mapper, connection, target):
    raise ValueError("Emergency overrides cannot be deleted")

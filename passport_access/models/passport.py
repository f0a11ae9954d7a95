import uuid

from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from passport_access.database import Base

PASSPORT_ACCESS_TYPES = ("otp", "emergency", "consent")


class PatientPassport(Base):
    """Portable summary of a patient's record, created on first verified access"""
    __tablename__ = "patient_passports"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String, nullable=False, unique=True, index=True)
    created_by = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    access_history = relationship(
        "PassportAccessRecord",
        order_by="PassportAccessRecord.access_date",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "created_by": self.created_by,
            "access_history": [r.to_dict() for r in self.access_history],
        }


class PassportAccessRecord(Base):
    __tablename__ = "passport_access_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    passport_id = Column(String, ForeignKey("patient_passports.id"), nullable=False, index=True)
    doctor_id = Column(String, nullable=False, index=True)
    access_type = Column(String, nullable=False)  # "otp", "emergency", "consent"
    reason = Column(Text, nullable=True)
    otp_verified = Column(Boolean, nullable=False, default=False)
    access_date = Column(DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "doctor_id": self.doctor_id,
            "access_type": self.access_type,
            "reason": self.reason,
            "otp_verified": self.otp_verified,
            "access_date": self.access_date.isoformat() if self.access_date else None,
        }

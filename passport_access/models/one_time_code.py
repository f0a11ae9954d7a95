from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer
from passport_access.database import Base


class OneTimeCode(Base):
    """
    Six-digit passport access code, bound to the doctor who requested it.
    One row per (patient, doctor); the row is deleted on use, expiry or lockout.
    """
    __tablename__ = "one_time_codes"

    patient_id = Column(String, primary_key=True)
    bound_doctor_id = Column(String, primary_key=True)

    code = Column(String(6), nullable=False, index=True)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    # Wrong guesses by the bound doctor; the row is dropped at OTP_MAX_ATTEMPTS
    attempts = Column(Integer, nullable=False, default=0)

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now

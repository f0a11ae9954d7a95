"""
Patient passport lookups and the access history appended on every grant
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from passport_access.core.clock import Clock, utcnow
from passport_access.core.context import ClientInfo
from passport_access.core.error_handling import ForbiddenError, NotFoundError
from passport_access.models.passport import PatientPassport, PassportAccessRecord, PASSPORT_ACCESS_TYPES
from passport_access.services.audit_trail import AuditTrail
from passport_access.utils.security import verify_token, PASSPORT_ACCESS_TYPE

logger = logging.getLogger(__name__)


class PassportService:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def get_for_patient(self, patient_id: str) -> Optional[PatientPassport]:
        return self.db.query(PatientPassport).filter(PatientPassport.patient_id == patient_id).first()

    def get_or_create(self, patient_id: str, created_by: Optional[str] = None) -> PatientPassport:
        passport = self.get_for_patient(patient_id)
        if passport is None:
            passport = PatientPassport(patient_id=patient_id, created_by=created_by)
            self.db.add(passport)
            self.db.flush()
            logger.info(f"Created passport for patient {patient_id}")
        return passport

    def add_access_record(
        self,
        passport: PatientPassport,
        doctor_id: str,
        access_type: str,
        reason: Optional[str] = None,
        otp_verified: bool = False,
    ) -> PassportAccessRecord:
        """Append to the passport's access history. Caller commits."""
        if access_type not in PASSPORT_ACCESS_TYPES:
            raise ValueError(f"Unknown passport access type: {access_type}")
        record = PassportAccessRecord(
            passport_id=passport.id,
            doctor_id=doctor_id,
            access_type=access_type,
            reason=reason,
            otp_verified=otp_verified,
            access_date=self.clock(),
        )
        self.db.add(record)
        return record

    def read_with_access_token(
        self,
        token: str,
        patient_id: str,
        doctor_id: str,
        client: Optional[ClientInfo] = None,
    ) -> PatientPassport:
        """Serve a passport to the holder of a verified-OTP access token"""
        payload = verify_token(token) if token else None
        if not payload or payload.get("accessType") != PASSPORT_ACCESS_TYPE:
            raise ForbiddenError("Invalid or expired passport access token")
        if payload.get("patientId") != patient_id:
            raise ForbiddenError("Access token is not valid for this patient")
        if payload.get("doctorId") != doctor_id:
            raise ForbiddenError("Access token was issued to a different doctor")

        passport = self.get_for_patient(patient_id)
        if passport is None:
            raise NotFoundError("Passport not found")

        AuditTrail(self.db, self.clock).record(
            actor_id=doctor_id,
            patient_id=patient_id,
            access_type="consent",
            action="view",
            details="Passport viewed with OTP access token",
            otp_verified=True,
            resource_type="patient_passport",
            resource_id=passport.id,
            client=client,
        )
        self.db.commit()
        return passport

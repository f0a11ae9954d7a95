"""
One-Time Code Engine
Six-digit codes a patient reads out to the doctor standing in front of them.

- One row per (patient, doctor); a live code is re-served, never re-minted
- Codes live OTP_TTL_MINUTES and are single use
- OTP_MAX_ATTEMPTS wrong guesses by the bound doctor revoke the code
- Verification is bound to the doctor who asked for the code
- Email delivery failure is a soft warning; the code stays valid
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from passport_access.config import settings
from passport_access.core.clock import Clock, utcnow
from passport_access.core.context import ClientInfo
from passport_access.core.error_handling import (
    NotFoundError,
    NoCodeError,
    InvalidCodeError,
    ExpiredError,
    ForbiddenError,
    TooManyAttemptsError,
)
from passport_access.models.one_time_code import OneTimeCode
from passport_access.models.user import User
from passport_access.services.audit_trail import AuditTrail
from passport_access.services.notifications import NotificationSink, NotificationMessage
from passport_access.services.passports import PassportService
from passport_access.utils.security import create_passport_access_token

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999
PASSPORT_READ_INSTRUCTION = (
    "Send the access token as X-Access-Token when reading the passport; "
    "reads are only served for the token's patientId"
)


def generate_code() -> str:
    return str(secrets.randbelow(CODE_MAX - CODE_MIN + 1) + CODE_MIN)


@dataclass
class CodeIssue:
    code: str
    expires_at: datetime
    bound_doctor_id: str
    reissued: bool = False
    delivery_warning: Optional[str] = None


@dataclass
class AccessAssertion:
    access_token: str
    doctor_id: str
    patient_id: str
    passport_id: str
    expires_at: datetime
    expires_in_minutes: int
    instruction: str = PASSPORT_READ_INSTRUCTION


class OneTimeCodeEngine:
    def __init__(self, db: Session, sink: Optional[NotificationSink] = None, clock: Clock = utcnow):
        self.db = db
        self.sink = sink
        self.clock = clock
        self.audit = AuditTrail(db, clock)

    def request_code(self, doctor_id: str, patient_id: str, client: Optional[ClientInfo] = None) -> CodeIssue:
        doctor = self.db.query(User).filter(User.id == doctor_id, User.role == "doctor").first()
        if doctor is None:
            raise NotFoundError("Doctor not found")
        patient = self.db.query(User).filter(User.id == patient_id, User.role == "patient").first()
        if patient is None:
            raise NotFoundError("Patient not found")

        now = self.clock()
        current = self._load(patient_id, doctor_id)
        if current is not None and current.is_live(now):
            logger.info(f"Re-serving live OTP for doctor {doctor_id} / patient {patient_id}")
            return self._reissue(current)

        code = generate_code()
        expires_at = now + timedelta(minutes=settings.OTP_TTL_MINUTES)

        if current is None:
            try:
                self.db.add(OneTimeCode(
                    patient_id=patient_id,
                    bound_doctor_id=doctor_id,
                    code=code,
                    issued_at=now,
                    expires_at=expires_at,
                    attempts=0,
                ))
                self.db.flush()
            except IntegrityError:
                self.db.rollback()
                return self._reissue_winner(patient_id, doctor_id)
        else:
            # Only replace a row that is still expired; a concurrent issuer may have won
            replaced = (
                self.db.query(OneTimeCode)
                .filter(
                    OneTimeCode.patient_id == patient_id,
                    OneTimeCode.bound_doctor_id == doctor_id,
                    OneTimeCode.expires_at <= now,
                )
                .update(
                    {"code": code, "issued_at": now, "expires_at": expires_at, "attempts": 0},
                    synchronize_session=False,
                )
            )
            if replaced == 0:
                self.db.rollback()
                return self._reissue_winner(patient_id, doctor_id)

        self.audit.record(
            actor_id=doctor_id,
            patient_id=patient_id,
            access_type="consent",
            action="create",
            details="Passport access OTP issued",
            resource_type="one_time_code",
            client=client,
        )
        self.db.commit()
        logger.info(f"OTP issued for doctor {doctor_id} / patient {patient_id}, expires {expires_at.isoformat()}")

        issue = CodeIssue(code=code, expires_at=expires_at, bound_doctor_id=doctor_id)
        issue.delivery_warning = self._deliver(issue, doctor, patient)
        return issue

    def verify_code(
        self,
        doctor_id: str,
        patient_id: str,
        submitted_code: str,
        client: Optional[ClientInfo] = None,
    ) -> AccessAssertion:
        submitted = (submitted_code or "").strip()
        rows = self.db.query(OneTimeCode).filter(OneTimeCode.patient_id == patient_id).all()
        if not rows:
            raise NoCodeError("No OTP found for this patient. Please request a new OTP.")

        well_formed = submitted.isascii() and submitted.isdigit()
        matches = [r for r in rows if well_formed and secrets.compare_digest(r.code, submitted)]
        if not matches:
            own = next((r for r in rows if r.bound_doctor_id == doctor_id), None)
            if own is not None:
                self._count_failed_attempt(own, client)
            raise InvalidCodeError("Invalid OTP")
        match = next((r for r in matches if r.bound_doctor_id == doctor_id), matches[0])

        now = self.clock()
        if now > match.expires_at:
            self.db.delete(match)
            self.audit.record(
                actor_id=doctor_id,
                patient_id=patient_id,
                access_type="consent",
                action="delete",
                details="Expired passport access OTP cleared",
                resource_type="one_time_code",
                client=client,
            )
            self.db.commit()
            raise ExpiredError("OTP has expired. Please request a new OTP.")

        if match.bound_doctor_id != doctor_id:
            raise ForbiddenError("This OTP was issued to a different doctor")

        self.db.delete(match)

        passports = PassportService(self.db, self.clock)
        passport = passports.get_or_create(patient_id, created_by=doctor_id)
        passports.add_access_record(
            passport,
            doctor_id=doctor_id,
            access_type="otp",
            reason="OTP verified passport access",
            otp_verified=True,
        )
        self.audit.record(
            actor_id=doctor_id,
            patient_id=patient_id,
            access_type="consent",
            action="view",
            details="Passport access granted via OTP verification",
            otp_verified=True,
            resource_type="patient_passport",
            resource_id=passport.id,
            client=client,
        )
        self.db.commit()

        grant_minutes = settings.OTP_ACCESS_GRANT_MINUTES
        logger.info(f"OTP verified for doctor {doctor_id} / patient {patient_id}")
        return AccessAssertion(
            access_token=create_passport_access_token(doctor_id, patient_id, now, grant_minutes),
            doctor_id=doctor_id,
            patient_id=patient_id,
            passport_id=passport.id,
            expires_at=now + timedelta(minutes=grant_minutes),
            expires_in_minutes=grant_minutes,
        )

    def invalidate(self, patient_id: str, doctor_id: Optional[str] = None) -> int:
        query = self.db.query(OneTimeCode).filter(OneTimeCode.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(OneTimeCode.bound_doctor_id == doctor_id)
        removed = query.delete(synchronize_session=False)
        self.db.commit()
        return removed

    def purge_expired(self) -> int:
        removed = (
            self.db.query(OneTimeCode)
            .filter(OneTimeCode.expires_at < self.clock())
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if removed:
            logger.info(f"Purged {removed} expired OTP rows")
        return removed

    def _count_failed_attempt(self, row: OneTimeCode, client: Optional[ClientInfo]) -> None:
        """Bump the wrong-guess counter; drop the code once the limit is hit"""
        row.attempts = (row.attempts or 0) + 1
        if row.attempts < settings.OTP_MAX_ATTEMPTS:
            self.db.commit()
            return

        patient_id, doctor_id = row.patient_id, row.bound_doctor_id
        self.db.delete(row)
        self.audit.record(
            actor_id=doctor_id,
            patient_id=patient_id,
            access_type="consent",
            action="delete",
            details=f"Passport access OTP revoked after {settings.OTP_MAX_ATTEMPTS} wrong attempts",
            resource_type="one_time_code",
            client=client,
        )
        self.db.commit()
        logger.warning(f"OTP for doctor {doctor_id} / patient {patient_id} revoked after too many attempts")
        raise TooManyAttemptsError("Too many attempts. Please request a new OTP.")

    def _load(self, patient_id: str, doctor_id: str) -> Optional[OneTimeCode]:
        return (
            self.db.query(OneTimeCode)
            .filter(OneTimeCode.patient_id == patient_id, OneTimeCode.bound_doctor_id == doctor_id)
            .first()
        )

    def _reissue(self, row: OneTimeCode) -> CodeIssue:
        return CodeIssue(
            code=row.code,
            expires_at=row.expires_at,
            bound_doctor_id=row.bound_doctor_id,
            reissued=True,
        )

    def _reissue_winner(self, patient_id: str, doctor_id: str) -> CodeIssue:
        winner = self._load(patient_id, doctor_id)
        if winner is None:
            raise NotFoundError("OTP could not be issued, please retry")
        logger.info(f"Concurrent OTP issuance for doctor {doctor_id} / patient {patient_id}; using existing code")
        return self._reissue(winner)

    def _deliver(self, issue: CodeIssue, doctor: User, patient: User) -> Optional[str]:
        if self.sink is None:
            warning = "Notifications are not configured; share the code through another channel"
        else:
            ticket = self.sink.enqueue(self.db, NotificationMessage(
                recipient_user_id=patient.id,
                type="otp_code",
                title="Passport Access Code",
                message=(
                    f"Dr. {doctor.full_name} requested access to your patient passport. "
                    f"Your access code is {issue.code}. It expires in {settings.OTP_TTL_MINUTES} minutes."
                ),
                priority="high",
                data={"doctor_id": doctor.id, "expires_at": issue.expires_at.isoformat()},
                email_subject="Your Patient Passport Access Code",
                email_html=(
                    f"<p>Dr. {doctor.full_name} has requested access to your patient passport.</p>"
                    f"<p>Your access code is: <strong>{issue.code}</strong></p>"
                    f"<p>This code expires in {settings.OTP_TTL_MINUTES} minutes. "
                    f"Only share it with the doctor who is treating you.</p>"
                ),
            ))
            if ticket.wait(timeout=settings.OTP_DELIVERY_WAIT_SECONDS):
                return None
            warning = "OTP generated but email delivery failed; the code is still valid"

        # Kept in server logs for operational recovery
        logger.warning(
            f"OTP delivery to patient {patient.id} failed; code {issue.code} "
            f"for doctor {doctor.id} valid until {issue.expires_at.isoformat()}"
        )
        return warning

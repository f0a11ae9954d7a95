"""
Emergency Override Engine
Break-glass access for clinicians in life-threatening situations.

Access is granted immediately, without patient approval, and compensated by:
- a mandatory justification (20-500 characters)
- a write-once override record plus an audit entry
- urgent notifications to the patient and the facility admin
- a further audit entry for every read made under the override

An override authorizes reads for EMERGENCY_ACCESS_WINDOW_HOURS after it was granted.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from passport_access.config import settings
from passport_access.core.clock import Clock, utcnow, to_naive_utc
from passport_access.core.context import Actor, ClientInfo
from passport_access.core.error_handling import (
    AccessValidationError,
    NotFoundError,
    ForbiddenError,
)
from passport_access.core.logging import log_audit
from passport_access.models.audit_log import AuditLogEntry
from passport_access.models.emergency_override import EmergencyOverride
from passport_access.models.hospital import Hospital
from passport_access.models.user import User
from passport_access.services.audit_trail import AuditTrail
from passport_access.services.notifications import NotificationSink, NotificationMessage
from passport_access.services.passports import PassportService

logger = logging.getLogger(__name__)

MIN_JUSTIFICATION_LENGTH = 20
MAX_JUSTIFICATION_LENGTH = 500
MAX_PAGE_SIZE = 100


@dataclass
class EmergencyGrant:
    override: EmergencyOverride
    notification_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _validate_page(page: int, limit: int) -> None:
    if page < 1:
        raise AccessValidationError("page must be 1 or greater")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise AccessValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


class EmergencyOverrideEngine:
    def __init__(self, db: Session, sink: Optional[NotificationSink] = None, clock: Clock = utcnow):
        self.db = db
        self.sink = sink
        self.clock = clock
        self.audit = AuditTrail(db, clock)
        self.window = timedelta(hours=settings.EMERGENCY_ACCESS_WINDOW_HOURS)

    def grant(
        self,
        doctor_user_id: str,
        patient_id: str,
        justification: str,
        hospital_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> EmergencyGrant:
        justification = (justification or "").strip()
        if len(justification) < MIN_JUSTIFICATION_LENGTH:
            raise AccessValidationError(
                f"Justification must be at least {MIN_JUSTIFICATION_LENGTH} characters long"
            )
        if len(justification) > MAX_JUSTIFICATION_LENGTH:
            raise AccessValidationError(
                f"Justification cannot exceed {MAX_JUSTIFICATION_LENGTH} characters"
            )

        doctor = self.db.query(User).filter(User.id == doctor_user_id).first()
        if doctor is None:
            raise NotFoundError("Doctor not found")
        if doctor.role != "doctor":
            raise ForbiddenError("Only doctors can request emergency access")

        patient = self.db.query(User).filter(User.id == patient_id, User.role == "patient").first()
        if patient is None:
            raise NotFoundError("Patient not found")

        hospital = None
        if hospital_id:
            hospital = self.db.query(Hospital).filter(Hospital.id == hospital_id).first()
            if hospital is None:
                raise NotFoundError("Hospital not found")
        elif doctor.hospital_id:
            hospital = self.db.query(Hospital).filter(Hospital.id == doctor.hospital_id).first()

        client = client or ClientInfo()
        override = EmergencyOverride(
            doctor_user_id=doctor_user_id,
            patient_id=patient_id,
            hospital_id=hospital.id if hospital else None,
            justification=justification,
            access_time=self.clock(),
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        self.db.add(override)
        self.db.flush()
        self.audit.record(
            actor_id=doctor_user_id,
            patient_id=patient_id,
            access_type="emergency",
            action="view",
            details=f"Emergency access granted: {justification}",
            resource_type="emergency_override",
            resource_id=override.id,
            client=client,
        )
        self.db.commit()
        self.db.refresh(override)

        logger.warning(
            f"[EMERGENCY ACCESS] Doctor {doctor_user_id} granted emergency access to patient {patient_id} "
            f"(override {override.id})"
        )
        log_audit("emergency_access_granted", doctor_user_id, {
            "override_id": override.id,
            "patient_id": patient_id,
            "hospital_id": override.hospital_id,
        })

        result = EmergencyGrant(override=override)
        self._record_on_passport(override, result)
        self._notify_patient(override, doctor, hospital, result)
        if hospital is not None and hospital.admin_user_id:
            self._notify_hospital_admin(override, doctor, patient, hospital, result)
        return result

    def latest_valid(self, doctor_user_id: str, patient_id: str) -> Optional[EmergencyOverride]:
        since = self.clock() - self.window
        return (
            self.db.query(EmergencyOverride)
            .filter(
                EmergencyOverride.doctor_user_id == doctor_user_id,
                EmergencyOverride.patient_id == patient_id,
                EmergencyOverride.access_time >= since,
            )
            .order_by(EmergencyOverride.access_time.desc())
            .first()
        )

    def is_valid_for_read(self, doctor_user_id: str, patient_id: str) -> bool:
        return self.latest_valid(doctor_user_id, patient_id) is not None

    def record_read(
        self,
        doctor_user_id: str,
        patient_id: str,
        client: Optional[ClientInfo] = None,
    ) -> EmergencyOverride:
        """Check the override window and audit one emergency read"""
        override = self.latest_valid(doctor_user_id, patient_id)
        if override is None:
            raise ForbiddenError("No valid emergency access. Please request emergency access first.")

        self.audit.record(
            actor_id=doctor_user_id,
            patient_id=patient_id,
            access_type="emergency",
            action="view",
            details=f"Patient record viewed under emergency override {override.id}",
            resource_type="emergency_override",
            resource_id=override.id,
            client=client,
        )
        self.db.commit()
        return override

    def list_overrides(
        self,
        actor: Actor,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        if not actor.is_admin:
            raise ForbiddenError("Only admins can view emergency access logs")
        _validate_page(page, limit)
        start, end = to_naive_utc(start), to_naive_utc(end)

        query = self.db.query(EmergencyOverride)
        if start:
            query = query.filter(EmergencyOverride.access_time >= start)
        if end:
            query = query.filter(EmergencyOverride.access_time <= end)
        if doctor_id:
            query = query.filter(EmergencyOverride.doctor_user_id == doctor_id)
        if patient_id:
            query = query.filter(EmergencyOverride.patient_id == patient_id)

        total = query.count()
        overrides = (
            query.order_by(EmergencyOverride.access_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "overrides": [o.to_dict() for o in overrides],
            "pagination": _pagination(page, limit, total),
        }

    def patient_audit(self, actor: Actor, patient_id: str) -> Dict[str, Any]:
        if actor.actor_id != patient_id and not actor.is_admin:
            raise ForbiddenError("You can only view your own emergency access history")

        overrides = (
            self.db.query(EmergencyOverride)
            .filter(EmergencyOverride.patient_id == patient_id)
            .order_by(EmergencyOverride.access_time.desc())
            .all()
        )
        entries = (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.patient_id == patient_id, AuditLogEntry.access_type == "emergency")
            .order_by(AuditLogEntry.access_time.desc(), AuditLogEntry.id.desc())
            .all()
        )
        return {
            "patient_id": patient_id,
            "overrides": [o.to_dict() for o in overrides],
            "audit_entries": [e.to_dict() for e in entries],
            "summary": {
                "total_emergency_accesses": len(overrides),
                "unique_doctors": len({o.doctor_user_id for o in overrides}),
                "last_access": overrides[0].access_time.isoformat() if overrides else None,
            },
        }

    def doctor_history(self, actor: Actor, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        if not actor.is_doctor:
            raise ForbiddenError("Only doctors have an emergency access history")
        _validate_page(page, limit)

        query = self.db.query(EmergencyOverride).filter(EmergencyOverride.doctor_user_id == actor.actor_id)
        total = query.count()
        overrides = (
            query.order_by(EmergencyOverride.access_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "overrides": [o.to_dict() for o in overrides],
            "pagination": _pagination(page, limit, total),
        }

    def _record_on_passport(self, override: EmergencyOverride, result: EmergencyGrant) -> None:
        passports = PassportService(self.db, self.clock)
        try:
            passport = passports.get_or_create(override.patient_id, created_by=override.doctor_user_id)
            passports.add_access_record(
                passport,
                doctor_id=override.doctor_user_id,
                access_type="emergency",
                reason=override.justification,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to add emergency access to passport for patient {override.patient_id}: {e}")
            result.warnings.append("Passport access history could not be updated")

    def _notify_patient(self, override: EmergencyOverride, doctor: User, hospital: Optional[Hospital], result) -> None:
        if self.sink is None:
            return
        where = f" at {hospital.name}" if hospital else ""
        ticket = self.sink.enqueue(self.db, NotificationMessage(
            recipient_user_id=override.patient_id,
            type="emergency_access",
            title="Emergency Access to Your Records",
            message=(
                f"Dr. {doctor.full_name}{where} accessed your medical records under emergency access. "
                f"Reason: {override.justification}"
            ),
            priority="urgent",
            data={
                "override_id": override.id,
                "doctor_id": override.doctor_user_id,
                "hospital_id": override.hospital_id,
                "access_time": override.access_time.isoformat(),
            },
            email_subject="Emergency Access to Your Medical Records",
            email_html=(
                f"<p>Dr. {doctor.full_name}{where} accessed your medical records under emergency access "
                f"on {override.access_time.isoformat()} UTC.</p>"
                f"<p><strong>Justification:</strong> {override.justification}</p>"
                f"<p>If you have concerns, <a href=\"{settings.FRONTEND_URL}/emergency-access\">review the access log</a>.</p>"
            ),
        ))
        self._collect(ticket, result)

    def _notify_hospital_admin(
        self,
        override: EmergencyOverride,
        doctor: User,
        patient: User,
        hospital: Hospital,
        result: EmergencyGrant,
    ) -> None:
        if self.sink is None:
            return
        ticket = self.sink.enqueue(self.db, NotificationMessage(
            recipient_user_id=hospital.admin_user_id,
            type="emergency_access",
            title="Emergency Access Alert",
            message=f"Dr. {doctor.full_name} used emergency access for patient {patient.full_name}.",
            priority="urgent",
            data={
                "override_id": override.id,
                "doctor_id": override.doctor_user_id,
                "patient_id": override.patient_id,
                "justification": override.justification,
            },
            email_subject=f"Emergency Access Alert - {hospital.name}",
            email_html=(
                f"<p>Dr. {doctor.full_name} used emergency access for patient {patient.full_name}.</p>"
                f"<p><strong>Justification:</strong> {override.justification}</p>"
                f"<p><strong>Time:</strong> {override.access_time.isoformat()} UTC</p>"
            ),
        ))
        self._collect(ticket, result)

    @staticmethod
    def _collect(ticket, result: EmergencyGrant) -> None:
        if ticket.notification_id:
            result.notification_ids.append(ticket.notification_id)
        else:
            result.warnings.append("A notification could not be recorded")

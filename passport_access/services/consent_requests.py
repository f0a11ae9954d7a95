"""
Consent Request Engine
A doctor asks for access to parts of a patient's record, the patient approves
or denies, and the grant lapses at expires_at.

Status rules:
- A request is expired whenever now > expires_at, whatever the stored value
- pending -> approved | denied happens once, by the owning patient
- Terminal requests are never reopened; a repeat request from the same doctor
  refreshes the live pending one instead of stacking a second row
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, List, Iterable

from sqlalchemy.orm import Session

from passport_access.config import settings
from passport_access.core.clock import Clock, utcnow
from passport_access.core.context import ClientInfo, SYSTEM_ACTOR_ID
from passport_access.core.error_handling import (
    AccessValidationError,
    NotFoundError,
    ForbiddenError,
    ExpiredError,
    RequestAlreadyProcessedError,
)
from passport_access.models.access_request import AccessRequest, REQUEST_TYPES, DATA_CATEGORIES
from passport_access.models.hospital import Hospital
from passport_access.models.user import User
from passport_access.services.audit_trail import AuditTrail
from passport_access.services.notifications import NotificationSink, NotificationMessage

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10
MAX_REASON_LENGTH = 500
RESPONSE_STATUSES = ("approved", "denied")


def normalize_requested_data(requested_data: Iterable[str]) -> List[str]:
    """Validate against the data vocabulary and drop duplicates, keeping order"""
    if requested_data is None or isinstance(requested_data, str):
        raise AccessValidationError("requested_data must be a list of data categories")
    categories = []
    for item in requested_data:
        if item not in DATA_CATEGORIES:
            raise AccessValidationError(
                f"Unknown data category: {item}",
                {"allowed": list(DATA_CATEGORIES)}
            )
        if item not in categories:
            categories.append(item)
    if not categories:
        raise AccessValidationError("At least one data category must be requested")
    return categories


class ConsentRequestEngine:
    def __init__(self, db: Session, sink: Optional[NotificationSink] = None, clock: Clock = utcnow):
        self.db = db
        self.sink = sink
        self.clock = clock
        self.audit = AuditTrail(db, clock)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        doctor_id: str,
        patient_id: str,
        hospital_id: Optional[str],
        request_type: str,
        reason: str,
        requested_data: Iterable[str],
        expires_in_hours: Optional[float] = None,
        client: Optional[ClientInfo] = None,
    ) -> AccessRequest:
        if request_type not in REQUEST_TYPES:
            raise AccessValidationError(f"Invalid request type: {request_type}")

        reason = (reason or "").strip()
        if not MIN_REASON_LENGTH <= len(reason) <= MAX_REASON_LENGTH:
            raise AccessValidationError(
                f"Reason must be between {MIN_REASON_LENGTH} and {MAX_REASON_LENGTH} characters"
            )

        categories = normalize_requested_data(requested_data)

        if expires_in_hours is None:
            expires_in_hours = (
                settings.CONSENT_EMERGENCY_EXPIRY_HOURS if request_type == "emergency"
                else settings.CONSENT_DEFAULT_EXPIRY_HOURS
            )
        if not 0 < expires_in_hours <= settings.CONSENT_MAX_EXPIRY_HOURS:
            raise AccessValidationError(
                f"expires_in_hours must be greater than 0 and at most {settings.CONSENT_MAX_EXPIRY_HOURS}"
            )

        doctor = self._get_user(doctor_id, "doctor", "Doctor not found")
        patient = self._get_user(patient_id, "patient", "Patient not found")

        hospital_id = hospital_id or doctor.hospital_id
        if not hospital_id:
            raise AccessValidationError("A hospital is required for access requests")
        hospital = self.db.query(Hospital).filter(Hospital.id == hospital_id).first()
        if hospital is None:
            raise NotFoundError("Hospital not found")

        now = self.clock()
        expires_at = now + timedelta(hours=expires_in_hours)

        existing = (
            self.db.query(AccessRequest)
            .filter(
                AccessRequest.doctor_id == doctor_id,
                AccessRequest.patient_id == patient_id,
                AccessRequest.status == "pending",
                AccessRequest.expires_at > now,
            )
            .order_by(AccessRequest.created_at.desc())
            .first()
        )

        if existing is not None:
            existing.hospital_id = hospital_id
            existing.request_type = request_type
            existing.reason = reason
            existing.requested_data = categories
            existing.expires_at = expires_at
            access_request = existing
            access_request.refresh_status(now)
            action, verb = "update", "refreshed"
        else:
            access_request = AccessRequest(
                patient_id=patient_id,
                doctor_id=doctor_id,
                hospital_id=hospital_id,
                request_type=request_type,
                reason=reason,
                requested_data=categories,
                status="pending",
                expires_at=expires_at,
                created_at=now,
            )
            access_request.refresh_status(now)
            self.db.add(access_request)
            self.db.flush()
            action, verb = "create", "created"

        self.audit.record(
            actor_id=doctor_id,
            patient_id=patient_id,
            access_type="consent",
            action=action,
            details=f"Access request {verb} ({request_type}): {', '.join(categories)}",
            resource_type="access_request",
            resource_id=access_request.id,
            client=client,
        )
        self.db.commit()
        self.db.refresh(access_request)

        logger.info(f"Access request {access_request.id} {verb} by doctor {doctor_id} for patient {patient_id}")

        self._notify(NotificationMessage(
            recipient_user_id=patient.id,
            type="access_request",
            title="New Access Request",
            message=f"Dr. {doctor.full_name} from {hospital.name} has requested access to your medical records.",
            priority="urgent" if request_type == "emergency" else "high",
            data={
                "request_id": access_request.id,
                "doctor_id": doctor_id,
                "hospital_id": hospital_id,
                "request_type": request_type,
                "requested_data": categories,
            },
            email_subject="Medical Record Access Request",
            email_html=(
                f"<p>Dr. {doctor.full_name} from {hospital.name} has requested access to your medical records.</p>"
                f"<p><strong>Reason:</strong> {reason}</p>"
                f"<p><strong>Requested data:</strong> {', '.join(categories)}</p>"
                f"<p>This request expires at {expires_at.isoformat()} UTC. "
                f"<a href=\"{settings.FRONTEND_URL}/access-requests\">Review the request</a>.</p>"
            ),
        ))
        return access_request

    def respond(
        self,
        request_id: str,
        acting_patient_id: str,
        status: str,
        reason: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> AccessRequest:
        if status not in RESPONSE_STATUSES:
            raise AccessValidationError("Status must be either approved or denied")
        if reason is not None:
            reason = reason.strip() or None
            if reason and len(reason) > MAX_REASON_LENGTH:
                raise AccessValidationError(f"Response reason cannot exceed {MAX_REASON_LENGTH} characters")

        access_request = self.db.query(AccessRequest).filter(AccessRequest.id == request_id).first()
        if access_request is None:
            raise NotFoundError("Access request not found")
        if access_request.patient_id != acting_patient_id:
            raise ForbiddenError("You can only respond to your own access requests")

        now = self.clock()
        if access_request.refresh_status(now):
            self.audit.record(
                actor_id=acting_patient_id,
                patient_id=access_request.patient_id,
                access_type="consent",
                action="update",
                details="Access request expired before the patient responded",
                resource_type="access_request",
                resource_id=access_request.id,
                client=client,
            )
            self.db.commit()
        if access_request.status == "expired":
            raise ExpiredError("Access request has expired")

        if access_request.status != "pending":
            raise RequestAlreadyProcessedError("Access request not found or already processed")

        access_request.status = status
        access_request.patient_response = status
        access_request.patient_response_at = now
        access_request.patient_response_reason = reason
        if status == "approved":
            access_request.approved_at = now
        else:
            access_request.denied_at = now

        details = f"Access request {status}"
        if reason:
            details += f": {reason}"
        self.audit.record(
            actor_id=acting_patient_id,
            patient_id=access_request.patient_id,
            access_type="consent",
            action="update",
            details=details,
            resource_type="access_request",
            resource_id=access_request.id,
            client=client,
        )
        self.db.commit()
        self.db.refresh(access_request)

        logger.info(f"Access request {access_request.id} {status} by patient {acting_patient_id}")

        patient = self.db.query(User).filter(User.id == acting_patient_id).first()
        patient_name = patient.full_name if patient else "The patient"
        self._notify(NotificationMessage(
            recipient_user_id=access_request.doctor_id,
            type=f"access_{status}",
            title=f"Access Request {status.capitalize()}",
            message=f"{patient_name} has {status} your access request.",
            priority="medium",
            data={
                "request_id": access_request.id,
                "patient_id": access_request.patient_id,
                "status": status,
            },
            email_subject=f"Access Request {status.capitalize()}",
            email_html=(
                f"<p>{patient_name} has {status} your request to access their medical records.</p>"
                + (f"<p><strong>Patient's note:</strong> {reason}</p>" if reason else "")
            ),
        ))
        return access_request

    def expire_stale(self) -> int:
        """Flip every lapsed request to expired. Returns the number flipped."""
        now = self.clock()
        stale = (
            self.db.query(AccessRequest)
            .filter(AccessRequest.status != "expired", AccessRequest.expires_at < now)
            .all()
        )
        flipped = self._expire_loaded(stale, now)
        if flipped:
            logger.info(f"Expired {flipped} stale access requests")
        return flipped

    def record_consented_read(
        self,
        doctor_id: str,
        patient_id: str,
        client: Optional[ClientInfo] = None,
    ) -> List[str]:
        """Gate and audit a read of consented data. Returns the approved categories."""
        approved = self._approved_requests(doctor_id, patient_id)
        if not approved:
            raise ForbiddenError("No approved access request for this patient")

        categories = []
        for access_request in approved:
            for item in access_request.requested_data or []:
                if item not in categories:
                    categories.append(item)

        self.audit.record(
            actor_id=doctor_id,
            patient_id=patient_id,
            access_type="consent",
            action="view",
            details=f"Consented record access: {', '.join(categories)}",
            resource_type="access_request",
            resource_id=approved[0].id,
            client=client,
        )
        self.db.commit()
        return categories

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def check_access(self, doctor_id: str, patient_id: str, requested_data: Optional[str] = None) -> bool:
        approved = self._approved_requests(doctor_id, patient_id)
        if requested_data is None:
            return bool(approved)
        return any(requested_data in (r.requested_data or []) for r in approved)

    def status_of(self, access_request: AccessRequest) -> str:
        return access_request.effective_status(self.clock())

    def pending_for_patient(self, patient_id: str) -> List[AccessRequest]:
        now = self.clock()
        return (
            self.db.query(AccessRequest)
            .filter(
                AccessRequest.patient_id == patient_id,
                AccessRequest.status == "pending",
                AccessRequest.expires_at > now,
            )
            .order_by(AccessRequest.created_at.desc())
            .all()
        )

    def by_doctor(self, doctor_id: str) -> List[AccessRequest]:
        requests = (
            self.db.query(AccessRequest)
            .filter(AccessRequest.doctor_id == doctor_id)
            .order_by(AccessRequest.created_at.desc())
            .all()
        )
        self._expire_loaded(requests, self.clock())
        return requests

    def get_request(self, request_id: str, user_id: str) -> AccessRequest:
        access_request = self.db.query(AccessRequest).filter(AccessRequest.id == request_id).first()
        if access_request is None or user_id not in (access_request.patient_id, access_request.doctor_id):
            raise NotFoundError("Access request not found")
        self._expire_loaded([access_request], self.clock())
        return access_request

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _approved_requests(self, doctor_id: str, patient_id: str) -> List[AccessRequest]:
        now = self.clock()
        return (
            self.db.query(AccessRequest)
            .filter(
                AccessRequest.doctor_id == doctor_id,
                AccessRequest.patient_id == patient_id,
                AccessRequest.status == "approved",
                AccessRequest.expires_at > now,
            )
            .order_by(AccessRequest.approved_at.desc())
            .all()
        )

    def _expire_loaded(self, requests: List[AccessRequest], now: datetime) -> int:
        """Persist the expiry of lapsed requests, one system audit entry each"""
        flipped = 0
        for access_request in requests:
            previous = access_request.status
            if not access_request.refresh_status(now):
                continue
            self.audit.record(
                actor_id=SYSTEM_ACTOR_ID,
                patient_id=access_request.patient_id,
                access_type="consent",
                action="update",
                details=f"Access request expired (was {previous})",
                resource_type="access_request",
                resource_id=access_request.id,
            )
            flipped += 1
        if flipped:
            self.db.commit()
        return flipped

    def _get_user(self, user_id: str, role: str, message: str) -> User:
        user = self.db.query(User).filter(User.id == user_id, User.role == role).first()
        if user is None:
            raise NotFoundError(message)
        return user

    def _notify(self, message: NotificationMessage) -> None:
        if self.sink is None:
            return
        self.sink.enqueue(self.db, message)

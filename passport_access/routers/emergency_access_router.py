"""
Emergency Access Router - Break-the-glass emergency access
Immediate access without patient approval, with mandatory justification,
notification and per-read audit logging.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from passport_access.config import settings
from passport_access.core.context import Actor, ClientInfo
from passport_access.core.error_handling import NotFoundError
from passport_access.database import get_db
from passport_access.dependencies import (
    require_role,
    get_current_actor,
    get_client_info,
    get_emergency_engine,
)
from passport_access.models.user import User
from passport_access.services.emergency_access import EmergencyOverrideEngine
from passport_access.services.passports import PassportService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/emergency-access", tags=["emergency"])


class EmergencyAccessRequest(BaseModel):
    patient_id: str
    justification: str
    hospital_id: Optional[str] = None


@router.post("/request", status_code=status.HTTP_201_CREATED)
def request_emergency_access(
    body: EmergencyAccessRequest,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    engine: EmergencyOverrideEngine = Depends(get_emergency_engine),
):
    """
    Emergency break-the-glass access for doctors.

    The override is recorded and audited before any notification goes out;
    notification problems are reported as warnings, never as failures.
    """
    grant = engine.grant(
        doctor_user_id=actor.actor_id,
        patient_id=body.patient_id,
        justification=body.justification,
        hospital_id=body.hospital_id,
        client=client,
    )
    override = grant.override
    valid_until = override.access_time + timedelta(hours=settings.EMERGENCY_ACCESS_WINDOW_HOURS)
    return {
        "success": True,
        "message": "Emergency access granted. This access has been logged and the patient has been notified.",
        "data": {
            "override": override.to_dict(),
            "valid_until": valid_until.isoformat(),
            "notification_ids": grant.notification_ids,
            "warnings": grant.warnings,
        },
    }


@router.get("/patient/{patient_id}")
def read_patient_under_emergency_access(
    patient_id: str,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    engine: EmergencyOverrideEngine = Depends(get_emergency_engine),
    db: Session = Depends(get_db),
):
    override = engine.record_read(actor.actor_id, patient_id, client)

    patient = db.query(User).filter(User.id == patient_id).first()
    if patient is None:
        raise NotFoundError("Patient not found")
    passport = PassportService(db).get_for_patient(patient_id)

    valid_until = override.access_time + timedelta(hours=settings.EMERGENCY_ACCESS_WINDOW_HOURS)
    return {
        "success": True,
        "message": "Patient data retrieved under emergency access",
        "data": {
            "override_id": override.id,
            "valid_until": valid_until.isoformat(),
            "patient": {
                "id": patient.id,
                "name": patient.full_name,
                "email": patient.email,
                "phone_number": patient.phone_number,
            },
            "passport": passport.to_dict() if passport else None,
        },
    }


@router.get("/logs")
def list_emergency_access_logs(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_role("admin")),
    engine: EmergencyOverrideEngine = Depends(get_emergency_engine),
):
    result = engine.list_overrides(
        actor,
        start=start_date,
        end=end_date,
        doctor_id=doctor_id,
        patient_id=patient_id,
        page=page,
        limit=limit,
    )
    return {"success": True, "message": "Emergency access logs retrieved", "data": result}


@router.get("/audit/{patient_id}")
def patient_emergency_audit(
    patient_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: EmergencyOverrideEngine = Depends(get_emergency_engine),
):
    result = engine.patient_audit(actor, patient_id)
    return {"success": True, "message": "Emergency access audit retrieved", "data": result}


@router.get("/my-history")
def my_emergency_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_role("doctor")),
    engine: EmergencyOverrideEngine = Depends(get_emergency_engine),
):
    result = engine.doctor_history(actor, page=page, limit=limit)
    return {"success": True, "message": "Emergency access history retrieved", "data": result}

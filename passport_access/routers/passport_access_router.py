"""
Passport Access Router - OTP-gated temporary access to a patient's passport
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session

from passport_access.config import settings
from passport_access.core.clock import Clock
from passport_access.core.context import Actor, ClientInfo
from passport_access.database import get_db
from passport_access.dependencies import require_role, get_client_info, get_clock, get_otp_engine
from passport_access.services.one_time_codes import OneTimeCodeEngine
from passport_access.services.passports import PassportService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/passport-access", tags=["passport-access"])


class OTPRequest(BaseModel):
    patient_id: str


class OTPVerification(BaseModel):
    patient_id: str
    otp: str


@router.post("/request-otp")
def request_otp(
    body: OTPRequest,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    engine: OneTimeCodeEngine = Depends(get_otp_engine),
):
    issue = engine.request_code(actor.actor_id, body.patient_id, client)

    data = {
        "patient_id": body.patient_id,
        "expires_at": issue.expires_at.isoformat(),
        "reissued": issue.reissued,
    }
    if issue.delivery_warning:
        data["delivery_warning"] = issue.delivery_warning
    # Opt-in for local testing; never echoed outside development
    if settings.OTP_ECHO_IN_RESPONSE and settings.is_development():
        data["otp"] = issue.code

    if issue.reissued:
        message = "An OTP is already active for this patient"
    elif issue.delivery_warning:
        message = "OTP generated but email delivery failed"
    else:
        message = "OTP sent to patient's email"
    return {"success": True, "message": message, "data": data}


@router.post("/verify-otp")
def verify_otp(
    body: OTPVerification,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    engine: OneTimeCodeEngine = Depends(get_otp_engine),
):
    assertion = engine.verify_code(actor.actor_id, body.patient_id, body.otp, client)
    return {
        "success": True,
        "message": "OTP verified successfully",
        "data": {
            "access_token": assertion.access_token,
            "patient_id": assertion.patient_id,
            "passport_id": assertion.passport_id,
            "expires_at": assertion.expires_at.isoformat(),
            "expires_in_minutes": assertion.expires_in_minutes,
            "instruction": assertion.instruction,
        },
    }


@router.delete("/patient/{patient_id}/otp")
def cancel_otp(
    patient_id: str,
    actor: Actor = Depends(require_role("doctor")),
    engine: OneTimeCodeEngine = Depends(get_otp_engine),
):
    removed = engine.invalidate(patient_id, actor.actor_id)
    return {
        "success": True,
        "message": "OTP cancelled" if removed else "No active OTP",
        "data": {"removed": removed},
    }


@router.get("/patient/{patient_id}/passport")
def read_passport(
    patient_id: str,
    x_access_token: Optional[str] = Header(None),
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    passport = PassportService(db, clock).read_with_access_token(
        x_access_token, patient_id, actor.actor_id, client
    )
    return {
        "success": True,
        "message": "Passport retrieved",
        "data": passport.to_dict(),
    }

"""
Access Request Router - patient consent workflow
"""

import logging
from typing import Optional, List
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from passport_access.core.clock import Clock
from passport_access.core.context import Actor, ClientInfo
from passport_access.dependencies import (
    require_role,
    get_current_actor,
    get_client_info,
    get_clock,
    get_consent_engine,
)
from passport_access.services.consent_requests import ConsentRequestEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/access-requests", tags=["access-requests"])


class CreateAccessRequest(BaseModel):
    patient_id: str
    hospital_id: Optional[str] = None
    request_type: str = "view"
    reason: str
    requested_data: List[str]
    expires_in_hours: Optional[float] = None


class RespondToAccessRequest(BaseModel):
    status: str
    reason: Optional[str] = None


@router.post("", status_code=status.HTTP_201_CREATED)
def create_access_request(
    body: CreateAccessRequest,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
    clock: Clock = Depends(get_clock),
):
    access_request = engine.create(
        doctor_id=actor.actor_id,
        patient_id=body.patient_id,
        hospital_id=body.hospital_id,
        request_type=body.request_type,
        reason=body.reason,
        requested_data=body.requested_data,
        expires_in_hours=body.expires_in_hours,
        client=client,
    )
    return {
        "success": True,
        "message": "Access request sent to patient",
        "data": access_request.to_dict(clock()),
    }


@router.get("/pending")
def get_pending_requests(
    actor: Actor = Depends(require_role("patient")),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    requests = engine.pending_for_patient(actor.actor_id)
    return {
        "success": True,
        "message": f"{len(requests)} pending access requests",
        "data": [r.to_dict(now) for r in requests],
    }


@router.get("/mine")
def get_doctor_requests(
    actor: Actor = Depends(require_role("doctor")),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    requests = engine.by_doctor(actor.actor_id)
    return {
        "success": True,
        "message": f"{len(requests)} access requests",
        "data": [r.to_dict(now) for r in requests],
    }


@router.get("/check/{patient_id}")
def check_access(
    patient_id: str,
    requested_data: Optional[str] = None,
    actor: Actor = Depends(require_role("doctor")),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
):
    has_access = engine.check_access(actor.actor_id, patient_id, requested_data)
    return {
        "success": True,
        "message": "Access granted" if has_access else "No approved access request",
        "data": {"patient_id": patient_id, "has_access": has_access},
    }


@router.get("/patient/{patient_id}/records")
def read_consented_records(
    patient_id: str,
    actor: Actor = Depends(require_role("doctor")),
    client: ClientInfo = Depends(get_client_info),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
):
    categories = engine.record_consented_read(actor.actor_id, patient_id, client)
    return {
        "success": True,
        "message": "Consented record access recorded",
        "data": {"patient_id": patient_id, "approved_data": categories},
    }


@router.get("/{request_id}")
def get_access_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
    clock: Clock = Depends(get_clock),
):
    access_request = engine.get_request(request_id, actor.actor_id)
    return {
        "success": True,
        "message": "Access request retrieved",
        "data": access_request.to_dict(clock()),
    }


@router.post("/{request_id}/respond")
def respond_to_access_request(
    request_id: str,
    body: RespondToAccessRequest,
    actor: Actor = Depends(require_role("patient")),
    client: ClientInfo = Depends(get_client_info),
    engine: ConsentRequestEngine = Depends(get_consent_engine),
    clock: Clock = Depends(get_clock),
):
    access_request = engine.respond(
        request_id=request_id,
        acting_patient_id=actor.actor_id,
        status=body.status,
        reason=body.reason,
        client=client,
    )
    return {
        "success": True,
        "message": f"Access request {access_request.status}",
        "data": access_request.to_dict(clock()),
    }

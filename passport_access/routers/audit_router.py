import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from passport_access.core.clock import Clock
from passport_access.core.context import Actor
from passport_access.core.error_handling import ForbiddenError
from passport_access.database import get_db
from passport_access.dependencies import get_current_actor, get_clock
from passport_access.services.audit_trail import AuditTrail

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/patient/{patient_id}")
def patient_audit_trail(
    patient_id: str,
    access_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Who touched this patient's data. Visible to the patient and to admins."""
    if actor.actor_id != patient_id and not actor.is_admin:
        raise ForbiddenError("You can only view your own audit trail")

    entries = AuditTrail(db, clock).for_patient(
        patient_id,
        access_type=access_type,
        start=start_date,
        end=end_date,
        limit=limit,
    )
    return {
        "success": True,
        "message": f"{len(entries)} audit entries",
        "data": [e.to_dict() for e in entries],
    }

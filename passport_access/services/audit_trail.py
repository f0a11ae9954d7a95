"""
Audit Trail
Append-only record of every access-control decision.

Entries are added to the caller's session so they commit (or roll back)
together with the grant they describe. Each entry is also mirrored to the
log as a [HIPAA_AUDIT] line.
"""

import json
import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy.orm import Session

from passport_access.core.clock import Clock, utcnow, to_naive_utc
from passport_access.core.context import ClientInfo
from passport_access.models.audit_log import (
    AuditLogEntry,
    ACCESS_TYPES,
    AUDIT_ACTIONS,
    MAX_DETAILS_LENGTH,
)

logger = logging.getLogger(__name__)


class AuditTrail:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def record(
        self,
        actor_id: str,
        patient_id: str,
        access_type: str,
        action: str,
        details: str,
        otp_verified: bool = False,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> AuditLogEntry:
        if access_type not in ACCESS_TYPES:
            raise ValueError(f"Unknown audit access type: {access_type}")
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")

        client = client or ClientInfo()
        entry = AuditLogEntry(
            actor_id=actor_id,
            patient_id=patient_id,
            access_type=access_type,
            action=action,
            details=(details or "")[:MAX_DETAILS_LENGTH],
            otp_verified=otp_verified,
            resource_type=resource_type,
            resource_id=resource_id,
            access_time=self.clock(),
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        self.db.add(entry)

        audit_entry = {
            "timestamp": entry.access_time.isoformat(),
            "actor_id": actor_id,
            "patient_id": patient_id,
            "access_type": access_type,
            "action": action,
            "otp_verified": otp_verified,
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        logger.info(f"[HIPAA_AUDIT] {json.dumps(audit_entry)}")
        return entry

    def for_patient(
        self,
        patient_id: str,
        access_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        start, end = to_naive_utc(start), to_naive_utc(end)
        query = self.db.query(AuditLogEntry).filter(AuditLogEntry.patient_id == patient_id)
        if access_type:
            query = query.filter(AuditLogEntry.access_type == access_type)
        if start:
            query = query.filter(AuditLogEntry.access_time >= start)
        if end:
            query = query.filter(AuditLogEntry.access_time <= end)
        return query.order_by(AuditLogEntry.access_time.desc(), AuditLogEntry.id.desc()).limit(limit).all()

    def for_actor(self, actor_id: str, limit: int = 100) -> List[AuditLogEntry]:
        return (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.actor_id == actor_id)
            .order_by(AuditLogEntry.access_time.desc(), AuditLogEntry.id.desc())
            .limit(limit)
            .all()
        )

    def count(self, patient_id: Optional[str] = None) -> int:
        query = self.db.query(AuditLogEntry)
        if patient_id:
            query = query.filter(AuditLogEntry.patient_id == patient_id)
        return query.count()

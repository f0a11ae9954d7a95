"""
Observation updates gated by the sync edit window
"""

from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from passport_access.core.clock import Clock, utcnow
from passport_access.core.context import ClientInfo
from passport_access.core.error_handling import AccessValidationError, NotFoundError, EditLockedError
from passport_access.core.logging import log_warning
from passport_access.models.observation import Observation, ObservationEditor, OBSERVATION_TYPES
from passport_access.services.audit_trail import AuditTrail
from passport_access.services.observation_edit_guard import (
    can_edit,
    check_edit_access,
    edit_info,
    medication_status_for,
)


class ObservationService:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock
        self.audit = AuditTrail(db, clock)

    def get(self, observation_id: str) -> Observation:
        observation = self.db.query(Observation).filter(Observation.id == observation_id).first()
        if observation is None:
            raise NotFoundError("Observation not found")
        return observation

    def ingest_synced(
        self,
        patient_id: str,
        observation_type: str,
        data: Dict[str, Any],
        created_by: Optional[str] = None,
        external_id: Optional[str] = None,
        sync_date: Optional[datetime] = None,
    ) -> Observation:
        """Store a record pulled from the external system; its creator may always edit it"""
        if observation_type not in OBSERVATION_TYPES:
            raise AccessValidationError(f"Invalid observation type: {observation_type}")

        sync_date = sync_date or self.clock()
        payload = dict(data or {})
        if observation_type == "medication":
            payload["medicationStatus"] = medication_status_for(sync_date, self.clock())

        observation = Observation(
            patient_id=patient_id,
            observation_type=observation_type,
            data=payload,
            sync_date=sync_date,
            external_id=external_id,
            created_by=created_by,
        )
        self.db.add(observation)
        self.db.flush()
        if created_by:
            self.db.add(ObservationEditor(
                observation_id=observation.id,
                clinician_id=created_by,
                added_at=sync_date,
            ))
        self.db.commit()
        self.db.refresh(observation)
        return observation

    def edit_access(self, observation_id: str, clinician_id: str) -> dict:
        observation = self.get(observation_id)
        info = edit_info(observation.sync_date, observation.editable_by, clinician_id, self.clock())
        info["observation_id"] = observation.id
        return info

    def update(
        self,
        observation_id: str,
        clinician_id: str,
        changes: Dict[str, Any],
        client: Optional[ClientInfo] = None,
    ) -> Observation:
        if not isinstance(changes, dict) or not changes:
            raise AccessValidationError("No changes supplied")

        observation = self.get(observation_id)
        now = self.clock()
        if not can_edit(observation.sync_date, observation.editable_by, clinician_id, now):
            access = check_edit_access(observation.sync_date, now)
            log_warning(
                f"Edit denied on observation {observation.id} for clinician {clinician_id}: {access.reason}",
                logger_name=__name__,
            )
            raise EditLockedError(
                f"{access.reason}. Only clinicians on this record's editor list can edit it.",
                {"hours_since_sync": access.hours_since_sync, "state": access.state.value},
            )

        data = dict(observation.data or {})
        data.update(changes)
        observation.data = data
        observation.last_edited_at = now
        observation.last_edited_by = clinician_id

        if clinician_id not in observation.editable_by:
            observation.editors.append(ObservationEditor(
                observation_id=observation.id,
                clinician_id=clinician_id,
                added_at=now,
            ))

        self.audit.record(
            actor_id=clinician_id,
            patient_id=observation.patient_id,
            access_type="regular",
            action="update",
            details=f"Updated {observation.observation_type} observation: {', '.join(sorted(changes))}",
            resource_type="observation",
            resource_id=observation.id,
            client=client,
        )
        self.db.commit()
        self.db.refresh(observation)
        return observation

    def refresh_medication_status(self, observation_id: str) -> Observation:
        observation = self.get(observation_id)
        if observation.observation_type != "medication":
            raise AccessValidationError("Only medication observations carry a status")
        status = medication_status_for(observation.sync_date, self.clock())
        if (observation.data or {}).get("medicationStatus") != status:
            data = dict(observation.data or {})
            data["medicationStatus"] = status
            observation.data = data
            self.db.commit()
            self.db.refresh(observation)
        return observation

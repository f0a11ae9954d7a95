"""
Observations synced in from an external clinical system, plus their
append-only edit allow-list
"""

import uuid

from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, event
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from passport_access.database import Base

OBSERVATION_TYPES = ("condition", "medication", "test", "visit")


class Observation(Base):
    __tablename__ = "observations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(String, nullable=False, index=True)
    observation_type = Column(String, nullable=False)  # "condition", "medication", "test", "visit"
    data = Column(JSON, nullable=False, default=dict)

    # Only set for records pulled from the external system
    sync_date = Column(DateTime, nullable=True)
    external_id = Column(String, nullable=True, index=True)

    created_by = Column(String, nullable=True)
    last_edited_at = Column(DateTime, nullable=True)
    last_edited_by = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    editors = relationship(
        "ObservationEditor",
        order_by="ObservationEditor.added_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def editable_by(self) -> list:
        return [e.clinician_id for e in self.editors]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "observation_type": self.observation_type,
            "data": self.data or {},
            "sync_date": self.sync_date.isoformat() if self.sync_date else None,
            "external_id": self.external_id,
            "created_by": self.created_by,
            "editable_by": self.editable_by,
            "last_edited_at": self.last_edited_at.isoformat() if self.last_edited_at else None,
            "last_edited_by": self.last_edited_by,
        }


class ObservationEditor(Base):
    """Clinician allowed to edit a synced observation after its window closes"""
    __tablename__ = "observation_editors"

    observation_id = Column(String, ForeignKey("observations.id"), primary_key=True)
    clinician_id = Column(String, primary_key=True)
    added_at = Column(DateTime, nullable=False)


@event.listens_for(ObservationEditor, "before_update")
def _reject_editor_update(mapper, connection, target):
    raise ValueError("Observation editors can only be added")


@event.listens_for(ObservationEditor, "before_delete")
def _reject_editor_delete(mapper, connection, target):
    raise ValueError("Observation editors cannot be removed")

"""
Synced observation edit window tests
"""

from datetime import datetime, timedelta

import pytest

from passport_access.core.error_handling import EditLockedError, NotFoundError, AccessValidationError
from passport_access.models.observation import Observation, ObservationEditor
from passport_access.services.observation_edit_guard import (
    EditState,
    can_edit,
    check_edit_access,
    edit_info,
    medication_status_for,
)
from passport_access.services.observations import ObservationService

SYNCED_AT = datetime(2026, 3, 1, 8, 0, 0)


class TestEditGuard:
    """Pure window rules"""

    def test_unsynced_record_is_always_editable(self):
        access = check_edit_access(None, SYNCED_AT + timedelta(days=30))
        assert access.state == EditState.UNSYNCED
        assert access.is_editable is True
        assert can_edit(None, [], "doctor_x", SYNCED_AT + timedelta(days=30)) is True

    @pytest.mark.parametrize("elapsed", [timedelta(0), timedelta(hours=2, minutes=59), timedelta(hours=3)])
    def test_open_within_window(self, elapsed):
        access = check_edit_access(SYNCED_AT, SYNCED_AT + elapsed)
        assert access.state == EditState.OPEN
        assert can_edit(SYNCED_AT, [], "doctor_x", SYNCED_AT + elapsed) is True

    def test_locked_after_window(self):
        now = SYNCED_AT + timedelta(hours=4)
        access = check_edit_access(SYNCED_AT, now)

        assert access.state == EditState.LOCKED
        assert access.is_editable is False
        assert access.hours_since_sync == 4
        assert "window closed" in access.reason.lower()

        assert can_edit(SYNCED_AT, ["doctor_a"], "doctor_x", now) is False
        assert can_edit(SYNCED_AT, ["doctor_a"], "doctor_a", now) is True

    def test_edit_info_hints(self):
        info = edit_info(SYNCED_AT, [], "doctor_x", SYNCED_AT + timedelta(hours=1))
        assert info["can_edit"] is True
        assert info["hours_remaining"] == 2

        locked = edit_info(SYNCED_AT, [], "doctor_x", SYNCED_AT + timedelta(hours=5))
        assert locked["can_edit"] is False
        assert locked["hours_remaining"] is None

    def test_medication_status(self):
        assert medication_status_for(SYNCED_AT, SYNCED_AT + timedelta(hours=1)) == "Active"
        assert medication_status_for(SYNCED_AT, SYNCED_AT + timedelta(hours=2)) == "Past"


@pytest.fixture
def observations(db_session, clock):
    return ObservationService(db_session, clock)


@pytest.fixture
def synced(observations, doctor, patient):
    return observations.ingest_synced(
        patient_id=patient.id,
        observation_type="condition",
        data={"diagnosis": "Hypertension"},
        created_by=doctor.id,
        external_id="obs-981",
    )


class TestObservationUpdates:
    def test_creator_seeded_on_allow_list(self, synced, doctor):
        assert synced.editable_by == [doctor.id]

    def test_any_clinician_edits_inside_window(self, observations, synced, other_doctor, clock, audit_entries):
        clock.advance(hours=2)
        updated = observations.update(synced.id, other_doctor.id, {"severity": "moderate"})

        assert updated.data == {"diagnosis": "Hypertension", "severity": "moderate"}
        assert updated.last_edited_by == other_doctor.id
        assert updated.last_edited_at == clock()
        assert updated.editable_by == ["doctor_a", other_doctor.id]

        entries = audit_entries(synced.patient_id)
        assert len(entries) == 1
        assert entries[0].access_type == "regular"
        assert entries[0].action == "update"

    def test_locked_for_outsiders(self, observations, synced, other_doctor, clock, audit_entries):
        clock.advance(hours=4)

        with pytest.raises(EditLockedError) as exc:
            observations.update(synced.id, other_doctor.id, {"severity": "mild"})
        assert exc.value.status_code == 403
        assert audit_entries(synced.patient_id) == []

    def test_allow_list_survives_lock(self, observations, synced, doctor, other_doctor, clock):
        clock.advance(hours=1)
        observations.update(synced.id, other_doctor.id, {"note": "first"})
        clock.advance(hours=5)

        observations.update(synced.id, other_doctor.id, {"note": "second"})
        observations.update(synced.id, doctor.id, {"note": "third"})

    def test_local_record_has_no_window(self, observations, db_session, patient, other_doctor, clock):
        local = Observation(patient_id=patient.id, observation_type="visit", data={"notes": "walk-in"})
        db_session.add(local)
        db_session.commit()
        clock.advance(days=10)

        updated = observations.update(local.id, other_doctor.id, {"notes": "follow-up"})
        assert updated.data["notes"] == "follow-up"

    def test_editors_cannot_be_removed(self, synced, db_session):
        synced.editors.pop()
        with pytest.raises(ValueError):
            db_session.commit()
        db_session.rollback()

        editor = db_session.query(ObservationEditor).filter_by(observation_id=synced.id).one()
        db_session.delete(editor)
        with pytest.raises(ValueError):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(ObservationEditor).filter_by(observation_id=synced.id).count() == 1

    def test_missing_observation(self, observations, doctor):
        with pytest.raises(NotFoundError):
            observations.update("missing", doctor.id, {"a": 1})

    def test_empty_changes(self, observations, synced, doctor):
        with pytest.raises(AccessValidationError):
            observations.update(synced.id, doctor.id, {})

    def test_medication_status_refresh(self, observations, patient, doctor, clock):
        medication = observations.ingest_synced(patient.id, "medication", {"name": "Amlodipine"}, doctor.id)
        assert medication.data["medicationStatus"] == "Active"

        clock.advance(hours=2)
        refreshed = observations.refresh_medication_status(medication.id)
        assert refreshed.data["medicationStatus"] == "Past"

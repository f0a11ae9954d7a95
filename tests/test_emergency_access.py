"""
Emergency break-glass access tests
"""

from datetime import timedelta

import pytest

from passport_access.core.context import Actor, ClientInfo
from passport_access.core.error_handling import AccessValidationError, NotFoundError, ForbiddenError
from passport_access.models.emergency_override import EmergencyOverride
from passport_access.models.notification import Notification
from passport_access.models.passport import PatientPassport
from passport_access.services.emergency_access import EmergencyOverrideEngine

JUSTIFICATION = "Unconscious patient, suspected anaphylaxis"


@pytest.fixture
def emergency(db_session, sink, clock):
    return EmergencyOverrideEngine(db_session, sink, clock)


class TestGrantValidation:
    def test_short_justification_rejected(self, emergency, doctor, patient, db_session, audit_entries):
        with pytest.raises(AccessValidationError):
            emergency.grant(doctor.id, patient.id, "too short")
        assert db_session.query(EmergencyOverride).count() == 0
        assert audit_entries() == []

    def test_padding_does_not_count(self, emergency, doctor, patient):
        with pytest.raises(AccessValidationError):
            emergency.grant(doctor.id, patient.id, "   short but padded       ")

    def test_long_justification_rejected(self, emergency, doctor, patient):
        with pytest.raises(AccessValidationError):
            emergency.grant(doctor.id, patient.id, "x" * 501)

    def test_unknown_patient(self, emergency, doctor):
        with pytest.raises(NotFoundError):
            emergency.grant(doctor.id, "ghost", JUSTIFICATION)

    def test_unknown_hospital(self, emergency, doctor, patient):
        with pytest.raises(NotFoundError):
            emergency.grant(doctor.id, patient.id, JUSTIFICATION, hospital_id="nowhere")

    def test_only_doctors(self, emergency, admin, patient):
        with pytest.raises(ForbiddenError):
            emergency.grant(admin.id, patient.id, JUSTIFICATION)


class TestGrant:
    def test_creates_override_and_audit(self, emergency, doctor, patient, hospital, clock, db_session,
                                        audit_entries):
        client = ClientInfo(ip_address="10.0.0.8", user_agent="pytest")
        grant = emergency.grant(doctor.id, patient.id, f"  {JUSTIFICATION}  ", client=client)

        override = grant.override
        assert override.justification == JUSTIFICATION
        assert override.hospital_id == hospital.id
        assert override.access_time == clock()
        assert override.ip_address == "10.0.0.8"
        assert db_session.query(EmergencyOverride).count() == 1

        entries = audit_entries(patient.id)
        assert len(entries) == 1
        assert entries[0].access_type == "emergency"
        assert entries[0].action == "view"
        assert entries[0].resource_id == override.id

    def test_notifies_patient_and_hospital_admin(self, emergency, doctor, patient, hospital_admin, sink,
                                                 mailer, db_session):
        grant = emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        sink.flush(timeout=5)

        assert len(grant.notification_ids) == 2
        notifications = db_session.query(Notification).all()
        assert {n.recipient_user_id for n in notifications} == {patient.id, hospital_admin.id}
        assert all(n.priority == "urgent" and n.type == "emergency_access" for n in notifications)
        assert {m["to"] for m in mailer.sent} == {patient.email, hospital_admin.email}

    def test_mail_failure_does_not_fail_grant(self, emergency, doctor, patient, sink, mailer, db_session):
        mailer.fail = True
        grant = emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        sink.flush(timeout=5)

        assert grant.override.id
        db_session.expire_all()
        notification = db_session.query(Notification).filter_by(recipient_user_id=patient.id).one()
        assert notification.delivery_status == "failed"

    def test_adds_passport_access_record(self, emergency, doctor, patient, db_session):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        passport = db_session.query(PatientPassport).filter_by(patient_id=patient.id).one()
        assert passport.access_history[0].access_type == "emergency"

    def test_override_is_write_once(self, emergency, doctor, patient, db_session):
        override = emergency.grant(doctor.id, patient.id, JUSTIFICATION).override
        override.justification = "Changed after the fact by someone"
        with pytest.raises(ValueError):
            db_session.commit()
        db_session.rollback()


class TestReadWindow:
    def test_valid_for_two_hours(self, emergency, doctor, patient, clock):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)

        clock.advance(hours=1, minutes=59)
        assert emergency.is_valid_for_read(doctor.id, patient.id) is True

        clock.advance(minutes=2)
        assert emergency.is_valid_for_read(doctor.id, patient.id) is False

    def test_bound_to_doctor(self, emergency, doctor, other_doctor, patient):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        assert emergency.is_valid_for_read(other_doctor.id, patient.id) is False

    def test_each_read_is_audited(self, emergency, doctor, patient, audit_entries):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        emergency.record_read(doctor.id, patient.id)
        emergency.record_read(doctor.id, patient.id)

        entries = audit_entries(patient.id)
        assert len(entries) == 3
        assert all(e.access_type == "emergency" for e in entries)

    def test_read_after_window_is_forbidden(self, emergency, doctor, patient, clock, audit_entries):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        clock.advance(hours=2, seconds=1)

        with pytest.raises(ForbiddenError):
            emergency.record_read(doctor.id, patient.id)
        assert len(audit_entries(patient.id)) == 1


class TestAuditViews:
    def test_list_overrides_admin_only(self, emergency, doctor, patient, admin):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)

        with pytest.raises(ForbiddenError):
            emergency.list_overrides(Actor(doctor.id, "doctor"))

        result = emergency.list_overrides(Actor(admin.id, "admin"))
        assert result["pagination"]["total"] == 1
        assert result["overrides"][0]["doctor_user_id"] == doctor.id

    def test_list_overrides_filters_and_pages(self, emergency, doctor, other_doctor, patient, admin, clock):
        start = clock()
        for _ in range(3):
            emergency.grant(doctor.id, patient.id, JUSTIFICATION)
            clock.advance(minutes=10)
        emergency.grant(other_doctor.id, patient.id, JUSTIFICATION)

        actor = Actor(admin.id, "admin")
        by_doctor = emergency.list_overrides(actor, doctor_id=doctor.id, page=1, limit=2)
        assert by_doctor["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert len(by_doctor["overrides"]) == 2

        windowed = emergency.list_overrides(actor, start=start + timedelta(minutes=5),
                                            end=start + timedelta(minutes=25))
        assert windowed["pagination"]["total"] == 2

        with pytest.raises(AccessValidationError):
            emergency.list_overrides(actor, limit=500)

    def test_patient_audit_self_or_admin(self, emergency, doctor, patient, admin):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        emergency.record_read(doctor.id, patient.id)

        own = emergency.patient_audit(Actor(patient.id, "patient"), patient.id)
        assert own["summary"]["total_emergency_accesses"] == 1
        assert own["summary"]["unique_doctors"] == 1
        assert len(own["audit_entries"]) == 2

        assert emergency.patient_audit(Actor(admin.id, "admin"), patient.id)["patient_id"] == patient.id

        with pytest.raises(ForbiddenError):
            emergency.patient_audit(Actor("patient_q", "patient"), patient.id)

    def test_doctor_history(self, emergency, doctor, other_doctor, patient):
        emergency.grant(doctor.id, patient.id, JUSTIFICATION)
        emergency.grant(other_doctor.id, patient.id, JUSTIFICATION)

        history = emergency.doctor_history(Actor(doctor.id, "doctor"))
        assert history["pagination"]["total"] == 1

        with pytest.raises(ForbiddenError):
            emergency.doctor_history(Actor(patient.id, "patient"))

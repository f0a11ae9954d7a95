"""
OTP-gated passport access tests

Covers the happy path, expiry cleanup, doctor binding, idempotent issuance,
concurrent issuers, multi-doctor codes, the wrong-guess limit, delivery
failure as a soft warning, and the access token.
"""

from datetime import timedelta

import pytest

from passport_access.core.error_handling import (
    NoCodeError,
    InvalidCodeError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    TooManyAttemptsError,
)
from passport_access.models.one_time_code import OneTimeCode
from passport_access.models.passport import PatientPassport
from passport_access.services.one_time_codes import OneTimeCodeEngine, generate_code
from passport_access.utils.security import verify_token


@pytest.fixture
def otp(db_session, sink, clock):
    return OneTimeCodeEngine(db_session, sink, clock)


def test_generate_code_is_six_digits():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6
        assert 100000 <= int(code) <= 999999


class TestRequestCode:
    def test_issues_bound_code(self, otp, doctor, patient, clock, mailer, audit_entries):
        issue = otp.request_code(doctor.id, patient.id)

        assert len(issue.code) == 6
        assert issue.bound_doctor_id == doctor.id
        assert issue.expires_at == clock() + timedelta(minutes=10)
        assert issue.reissued is False
        assert issue.delivery_warning is None
        assert issue.code in mailer.sent[0]["html"]
        assert len(audit_entries(patient.id)) == 1

    def test_live_code_is_reissued_unchanged(self, otp, doctor, patient, clock, mailer, audit_entries):
        first = otp.request_code(doctor.id, patient.id)
        clock.advance(minutes=3)
        second = otp.request_code(doctor.id, patient.id)

        assert second.reissued is True
        assert second.code == first.code
        assert second.expires_at == first.expires_at
        assert len(mailer.sent) == 1
        assert len(audit_entries(patient.id)) == 1

    def test_expired_code_is_replaced(self, otp, doctor, patient, clock, db_session):
        first = otp.request_code(doctor.id, patient.id)
        clock.advance(minutes=11)
        second = otp.request_code(doctor.id, patient.id)

        assert second.reissued is False
        assert second.expires_at == clock() + timedelta(minutes=10)
        db_session.expire_all()
        assert db_session.query(OneTimeCode).count() == 1
        assert first.expires_at < second.expires_at

    def test_codes_for_different_doctors_coexist(self, otp, doctor, other_doctor, patient, db_session):
        otp.request_code(doctor.id, patient.id)
        otp.request_code(other_doctor.id, patient.id)
        assert db_session.query(OneTimeCode).filter_by(patient_id=patient.id).count() == 2

    def test_unknown_patient(self, otp, doctor):
        with pytest.raises(NotFoundError):
            otp.request_code(doctor.id, "ghost")

    def test_delivery_failure_is_soft(self, otp, doctor, patient, mailer, db_session, caplog):
        mailer.fail = True
        issue = otp.request_code(doctor.id, patient.id)

        assert issue.delivery_warning
        assert db_session.query(OneTimeCode).filter_by(code=issue.code).count() == 1
        assert any(issue.code in record.getMessage() for record in caplog.records)

    def test_without_sink_reports_warning(self, db_session, clock, doctor, patient):
        issue = OneTimeCodeEngine(db_session, None, clock).request_code(doctor.id, patient.id)
        assert issue.delivery_warning


class TestConcurrentIssuance:
    """Another issuer commits between our read and our write"""

    def _load_once(self, monkeypatch, engine, first_result):
        real_load = engine._load
        calls = []

        def load(patient_id, doctor_id):
            calls.append((patient_id, doctor_id))
            if len(calls) == 1:
                return first_result
            return real_load(patient_id, doctor_id)

        monkeypatch.setattr(engine, "_load", load)
        return calls

    def test_insert_conflict_serves_winning_code(self, otp, doctor, patient, clock, session_factory,
                                                 db_session, monkeypatch, audit_entries, mailer):
        rival = session_factory()
        rival.add(OneTimeCode(patient_id=patient.id, bound_doctor_id=doctor.id, code="123456",
                              issued_at=clock(), expires_at=clock() + timedelta(minutes=10), attempts=0))
        rival.commit()
        rival.close()
        calls = self._load_once(monkeypatch, otp, None)

        issue = otp.request_code(doctor.id, patient.id)

        assert len(calls) == 2
        assert issue.reissued is True
        assert issue.code == "123456"
        assert audit_entries(patient.id) == []
        assert mailer.sent == []
        assert db_session.query(OneTimeCode).count() == 1

    def test_replace_matching_no_rows_serves_winning_code(self, db_session, clock, doctor, patient,
                                                         session_factory, monkeypatch, audit_entries):
        otp = OneTimeCodeEngine(db_session, None, clock)
        first = otp.request_code(doctor.id, patient.id)
        clock.advance(minutes=11)

        rival = session_factory()
        row = rival.query(OneTimeCode).filter_by(patient_id=patient.id, bound_doctor_id=doctor.id).one()
        row.code = "654321"
        row.issued_at = clock()
        row.expires_at = clock() + timedelta(minutes=10)
        rival.commit()
        rival.close()

        stale = OneTimeCode(patient_id=patient.id, bound_doctor_id=doctor.id, code=first.code,
                            issued_at=clock() - timedelta(minutes=11), expires_at=first.expires_at)
        calls = self._load_once(monkeypatch, otp, stale)

        issue = otp.request_code(doctor.id, patient.id)

        assert len(calls) == 2
        assert issue.reissued is True
        assert issue.code == "654321"
        assert issue.expires_at == clock() + timedelta(minutes=10)
        assert len(audit_entries(patient.id)) == 1

    def test_winner_vanished(self, otp, doctor, patient, db_session, session_factory, clock, monkeypatch):
        rival = session_factory()
        rival.add(OneTimeCode(patient_id=patient.id, bound_doctor_id=doctor.id, code="123456",
                              issued_at=clock(), expires_at=clock() + timedelta(minutes=10), attempts=0))
        rival.commit()
        rival.close()
        monkeypatch.setattr(otp, "_load", lambda patient_id, doctor_id: None)

        with pytest.raises(NotFoundError):
            otp.request_code(doctor.id, patient.id)


class TestVerifyCode:
    def test_happy_path(self, otp, doctor, patient, clock, db_session, audit_entries):
        issue = otp.request_code(doctor.id, patient.id)
        clock.advance(minutes=5)

        assertion = otp.verify_code(doctor.id, patient.id, issue.code)

        assert assertion.expires_in_minutes == 60
        assert assertion.patient_id == patient.id
        assert db_session.query(OneTimeCode).count() == 0

        entries = audit_entries(patient.id)
        assert len(entries) == 2
        assert entries[-1].otp_verified is True

        payload = verify_token(assertion.access_token)
        assert payload["patientId"] == patient.id
        assert payload["doctorId"] == doctor.id
        assert payload["accessType"] == "passport_view"

        passport = db_session.query(PatientPassport).filter_by(patient_id=patient.id).one()
        assert passport.access_history[-1].access_type == "otp"
        assert passport.access_history[-1].otp_verified is True

    def test_code_is_single_use(self, otp, doctor, patient):
        issue = otp.request_code(doctor.id, patient.id)
        otp.verify_code(doctor.id, patient.id, issue.code)

        with pytest.raises(NoCodeError):
            otp.verify_code(doctor.id, patient.id, issue.code)

    def test_submitted_code_is_trimmed(self, otp, doctor, patient):
        issue = otp.request_code(doctor.id, patient.id)
        assertion = otp.verify_code(doctor.id, patient.id, f"  {issue.code} ")
        assert assertion.doctor_id == doctor.id

    def test_expired_code_is_cleared(self, otp, doctor, patient, clock, db_session, audit_entries):
        issue = otp.request_code(doctor.id, patient.id)
        clock.advance(minutes=11)

        with pytest.raises(ExpiredError):
            otp.verify_code(doctor.id, patient.id, issue.code)

        db_session.expire_all()
        assert db_session.query(OneTimeCode).count() == 0
        assert len(audit_entries(patient.id)) == 2

        with pytest.raises(NoCodeError):
            otp.verify_code(doctor.id, patient.id, issue.code)

    def test_wrong_doctor_is_forbidden(self, otp, doctor, other_doctor, patient, db_session, audit_entries):
        issue = otp.request_code(doctor.id, patient.id)

        with pytest.raises(ForbiddenError):
            otp.verify_code(other_doctor.id, patient.id, issue.code)

        assert db_session.query(OneTimeCode).filter_by(bound_doctor_id=doctor.id).count() == 1
        assert len(audit_entries(patient.id)) == 1

        # Code remains usable by the doctor it was issued to
        otp.verify_code(doctor.id, patient.id, issue.code)

    def test_invalid_code(self, otp, doctor, patient, audit_entries):
        issue = otp.request_code(doctor.id, patient.id)
        wrong = "000000" if issue.code != "000000" else "111111"

        with pytest.raises(InvalidCodeError):
            otp.verify_code(doctor.id, patient.id, wrong)
        with pytest.raises(InvalidCodeError):
            otp.verify_code(doctor.id, patient.id, "12a456")
        assert len(audit_entries(patient.id)) == 1

    def test_code_survives_guesses_below_limit(self, otp, doctor, patient, db_session):
        issue = otp.request_code(doctor.id, patient.id)
        wrong = "000000" if issue.code != "000000" else "111111"

        for _ in range(2):
            with pytest.raises(InvalidCodeError):
                otp.verify_code(doctor.id, patient.id, wrong)

        db_session.expire_all()
        assert db_session.query(OneTimeCode).one().attempts == 2
        assert otp.verify_code(doctor.id, patient.id, issue.code).doctor_id == doctor.id

    def test_code_revoked_after_max_attempts(self, otp, doctor, patient, db_session, audit_entries):
        issue = otp.request_code(doctor.id, patient.id)
        wrong = "000000" if issue.code != "000000" else "111111"

        for _ in range(2):
            with pytest.raises(InvalidCodeError):
                otp.verify_code(doctor.id, patient.id, wrong)
        with pytest.raises(TooManyAttemptsError):
            otp.verify_code(doctor.id, patient.id, wrong)

        db_session.expire_all()
        assert db_session.query(OneTimeCode).count() == 0
        last = audit_entries(patient.id)[-1]
        assert last.action == "delete"
        assert last.resource_type == "one_time_code"
        assert last.actor_id == doctor.id

        with pytest.raises(NoCodeError):
            otp.verify_code(doctor.id, patient.id, issue.code)

    def test_new_code_after_lockout_starts_fresh(self, otp, doctor, patient, db_session):
        issue = otp.request_code(doctor.id, patient.id)
        wrong = "000000" if issue.code != "000000" else "111111"
        for _ in range(2):
            with pytest.raises(InvalidCodeError):
                otp.verify_code(doctor.id, patient.id, wrong)
        with pytest.raises(TooManyAttemptsError):
            otp.verify_code(doctor.id, patient.id, wrong)

        fresh = otp.request_code(doctor.id, patient.id)
        assert fresh.reissued is False
        db_session.expire_all()
        assert db_session.query(OneTimeCode).one().attempts == 0

    def test_other_doctor_guesses_do_not_count(self, otp, doctor, other_doctor, patient, db_session):
        issue = otp.request_code(doctor.id, patient.id)
        wrong = "000000" if issue.code != "000000" else "111111"

        for _ in range(4):
            with pytest.raises(InvalidCodeError):
                otp.verify_code(other_doctor.id, patient.id, wrong)

        db_session.expire_all()
        assert db_session.query(OneTimeCode).one().attempts == 0
        otp.verify_code(doctor.id, patient.id, issue.code)

    def test_no_code_requested(self, otp, doctor, patient):
        with pytest.raises(NoCodeError):
            otp.verify_code(doctor.id, patient.id, "123456")

    def test_each_doctor_verifies_own_code(self, otp, doctor, other_doctor, patient, db_session):
        first = otp.request_code(doctor.id, patient.id)
        second = otp.request_code(other_doctor.id, patient.id)

        otp.verify_code(other_doctor.id, patient.id, second.code)
        otp.verify_code(doctor.id, patient.id, first.code)

        passport = db_session.query(PatientPassport).filter_by(patient_id=patient.id).one()
        assert {r.doctor_id for r in passport.access_history} == {doctor.id, other_doctor.id}


class TestInvalidation:
    def test_invalidate_pair(self, otp, doctor, other_doctor, patient, db_session):
        otp.request_code(doctor.id, patient.id)
        otp.request_code(other_doctor.id, patient.id)

        assert otp.invalidate(patient.id, doctor.id) == 1
        assert db_session.query(OneTimeCode).count() == 1

    def test_purge_expired(self, otp, doctor, patient, clock, db_session):
        otp.request_code(doctor.id, patient.id)
        assert otp.purge_expired() == 0
        clock.advance(minutes=15)
        assert otp.purge_expired() == 1
        assert db_session.query(OneTimeCode).count() == 0

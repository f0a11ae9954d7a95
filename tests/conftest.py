"""
Pytest configuration for the access-control test suite
"""

import os
import sys
import tempfile
from datetime import timedelta

import pytest

# Configure settings BEFORE importing any passport_access modules
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "passport_access_test.db")
os.environ["ENVIRONMENT"] = "development"
os.environ["EMAIL_PROVIDER"] = "log"
os.environ["JWT_SECRET"] = "test-secret-key-for-access-control-suite"
os.environ["AWS_REGION"] = "us-east-1"

# Add parent directory to path to import passport_access modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from passport_access.core.clock import utcnow
from passport_access.database import Base
from passport_access import models  # noqa: F401
from passport_access.models.audit_log import AuditLogEntry
from passport_access.models.hospital import Hospital
from passport_access.models.user import User
from passport_access.services.mailer import Mailer, MailDeliveryError
from passport_access.services.notifications import NotificationSink


class FrozenClock:
    """Clock that only moves when a test advances it"""

    def __init__(self, start=None):
        self.now = (start or utcnow()).replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingMailer(Mailer):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html, text=None):
        if self.fail:
            raise MailDeliveryError("mail provider unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"msg-{len(self.sent)}"


@pytest.fixture(scope="function")
def engine(tmp_path):
    """Fresh file-backed database per test so worker threads get their own connections"""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'access_control.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def sink(session_factory, mailer, clock):
    notification_sink = NotificationSink(session_factory, mailer=mailer, clock=clock, max_workers=2)
    yield notification_sink
    notification_sink.shutdown()


@pytest.fixture
def hospital(db_session):
    record = Hospital(id="hosp_1", name="Kigali General", admin_user_id="hosp_admin_1")
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture
def hospital_admin(db_session, hospital):
    user = User(id="hosp_admin_1", email="admin@kigali-general.test", role="hospital_admin",
                first_name="Grace", last_name="Uwase", hospital_id=hospital.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def doctor(db_session, hospital):
    user = User(id="doctor_a", email="doctor.a@test.com", role="doctor",
                first_name="Alice", last_name="Mugisha", hospital_id=hospital.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def other_doctor(db_session, hospital):
    user = User(id="doctor_b", email="doctor.b@test.com", role="doctor",
                first_name="Brian", last_name="Habimana", hospital_id=hospital.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def patient(db_session):
    user = User(id="patient_p", email="patient.p@test.com", role="patient",
                first_name="Paul", last_name="Nkurunziza")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin(db_session):
    user = User(id="admin_1", email="admin@test.com", role="admin", first_name="Ada")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def audit_entries(db_session):
    """Audit rows as seen from a fresh query, oldest first"""
    def _entries(patient_id=None):
        db_session.expire_all()
        query = db_session.query(AuditLogEntry)
        if patient_id:
            query = query.filter(AuditLogEntry.patient_id == patient_id)
        return query.order_by(AuditLogEntry.id).all()
    return _entries

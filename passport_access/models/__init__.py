from passport_access.models.user import User
from passport_access.models.hospital import Hospital
from passport_access.models.access_request import AccessRequest
from passport_access.models.one_time_code import OneTimeCode
from passport_access.models.emergency_override import EmergencyOverride
from passport_access.models.audit_log import AuditLogEntry
from passport_access.models.notification import Notification
from passport_access.models.observation import Observation, ObservationEditor
from passport_access.models.passport import PatientPassport, PassportAccessRecord

__all__ = [
    "User",
    "Hospital",
    "AccessRequest",
    "OneTimeCode",
    "EmergencyOverride",
    "AuditLogEntry",
    "Notification",
    "Observation",
    "ObservationEditor",
    "PatientPassport",
    "PassportAccessRecord",
]

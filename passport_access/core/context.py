"""
Request context passed from the HTTP layer into the access-control engines.
Authentication happens upstream; the engines only authorize.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    HOSPITAL_ADMIN = "hospital_admin"


SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller"""
    actor_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def is_doctor(self) -> bool:
        return self.role == Role.DOCTOR.value

    @property
    def is_patient(self) -> bool:
        return self.role == Role.PATIENT.value


@dataclass(frozen=True)
class ClientInfo:
    """Network metadata recorded alongside audit entries"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import logging

from jose import JWTError, jwt
from passport_access.config import settings
from passport_access.core.clock import utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
PASSPORT_ACCESS_TYPE = "passport_view"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None, now: Optional[datetime] = None) -> str:
    to_encode = data.copy()
    issued = now or utcnow()
    if expires_delta:
        expire = issued + expires_delta
    else:
        expire = issued + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, settings.jwt_secret(), algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify a JWT signed with the service secret.
    Returns the payload, or None when the token is invalid or expired.
    """
    try:
        return jwt.decode(token, settings.jwt_secret(), algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f"Token verification failed: {type(e).__name__}")
        return None


def create_passport_access_token(doctor_id: str, patient_id: str, now: datetime, minutes: int) -> str:
    return create_access_token(
        {
            "doctorId": doctor_id,
            "patientId": patient_id,
            "accessType": PASSPORT_ACCESS_TYPE,
        },
        expires_delta=timedelta(minutes=minutes),
        now=now,
    )

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from passport_access.core.clock import Clock, utcnow
from passport_access.core.context import Actor, ClientInfo
from passport_access.database import get_db
from passport_access.models.user import User
from passport_access.services.consent_requests import ConsentRequestEngine
from passport_access.services.emergency_access import EmergencyOverrideEngine
from passport_access.services.notifications import NotificationSink
from passport_access.services.observations import ObservationService
from passport_access.services.one_time_codes import OneTimeCodeEngine
from passport_access.utils.security import verify_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(token)
    if payload is None:
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None or not isinstance(user_id, str):
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise credentials_exception

    return user


async def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor(actor_id=current_user.id, role=current_user.role)


def require_role(*roles: str):
    """
    Dependency factory that creates a role-checking dependency.
    Usage: actor = Depends(require_role("doctor"))
    """
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Only {' or '.join(r + 's' for r in roles)} can access this resource"
            )
        return actor
    return role_checker


def get_clock() -> Clock:
    return utcnow


def get_notification_sink(request: Request) -> Optional[NotificationSink]:
    return getattr(request.app.state, "notification_sink", None)


def get_client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientInfo(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


def get_consent_engine(
    db: Session = Depends(get_db),
    sink: Optional[NotificationSink] = Depends(get_notification_sink),
    clock: Clock = Depends(get_clock),
) -> ConsentRequestEngine:
    return ConsentRequestEngine(db, sink, clock)


def get_otp_engine(
    db: Session = Depends(get_db),
    sink: Optional[NotificationSink] = Depends(get_notification_sink),
    clock: Clock = Depends(get_clock),
) -> OneTimeCodeEngine:
    return OneTimeCodeEngine(db, sink, clock)


def get_emergency_engine(
    db: Session = Depends(get_db),
    sink: Optional[NotificationSink] = Depends(get_notification_sink),
    clock: Clock = Depends(get_clock),
) -> EmergencyOverrideEngine:
    return EmergencyOverrideEngine(db, sink, clock)


def get_observation_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ObservationService:
    return ObservationService(db, clock)

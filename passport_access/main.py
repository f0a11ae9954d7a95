import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError

from passport_access.config import settings
from passport_access.core.error_handling import (
    AccessControlError,
    ErrorHandlingMiddleware,
    access_control_error_handler,
)
from passport_access.core.logging import setup_logging
from passport_access.database import Base, SessionLocal, engine
from passport_access import models  # noqa: F401  registers every table on Base
from passport_access.routers import (
    access_request_router,
    passport_access_router,
    emergency_access_router,
    observation_router,
    notification_router,
    audit_router,
)
from passport_access.services.consent_requests import ConsentRequestEngine
from passport_access.services.notifications import NotificationSink
from passport_access.services.one_time_codes import OneTimeCodeEngine

setup_logging()
logger = logging.getLogger(__name__)


def run_maintenance() -> None:
    """Expire lapsed consent requests and drop dead one-time codes"""
    db = SessionLocal()
    try:
        expired = ConsentRequestEngine(db).expire_stale()
        purged = OneTimeCodeEngine(db).purge_expired()
        logger.info(f"Maintenance: {expired} access requests expired, {purged} OTP rows purged")
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Maintenance pass failed: {e}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Patient Passport access service...")

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create tables: {e}")

    run_maintenance()

    app.state.notification_sink = NotificationSink(SessionLocal)
    logger.info(f"Notification sink started ({settings.NOTIFICATION_WORKERS} workers, provider={settings.EMAIL_PROVIDER})")

    yield

    logger.info("Shutting down, draining notification deliveries...")
    app.state.notification_sink.shutdown()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Patient Passport - Access Control",
    description="Consent requests, OTP passport access, emergency override and synced-record edit control",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(AccessControlError, access_control_error_handler)

app.include_router(access_request_router.router)
app.include_router(passport_access_router.router)
app.include_router(emergency_access_router.router)
app.include_router(observation_router.router)
app.include_router(notification_router.router)
app.include_router(audit_router.router)


@app.get("/")
async def root():
    return {
        "message": "Patient Passport Access API",
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "passport_access.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development()
    )
